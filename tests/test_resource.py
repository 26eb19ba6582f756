import pytest

from trustee_kbs.metrics import RESOURCE_READS_TOTAL, RESOURCE_WRITES_TOTAL
from trustee_kbs.resource import (
    DEFAULT_REPO_DIR_PATH,
    LocalFs,
    LocalFsRepoDesc,
    ResourceDesc,
    ResourceStorage,
    repository_config_from_dict,
)

TEST_DATA = b"testdata"


@pytest.mark.parametrize(
    "desc, expected",
    [
        ("default/1/2", ResourceDesc("default", "1", "2")),
        ("/1/2", None),
        ("/repo/type/tag", None),
        ("repo/type/tag", ResourceDesc("repo", "type", "tag")),
        ("1/2", None),
        (
            "123--_default/1Abff-_/___-afds44BC",
            ResourceDesc("123--_default", "1Abff-_", "___-afds44BC"),
        ),
        ("1.ok/2ok./3...", ResourceDesc("1.ok", "2ok.", "3...")),
        (".1.ok/2ok./3...", None),
        ("1.ok/.2ok./3...", None),
        ("1.ok/2ok./.3...", None),
    ],
)
def test_parse_resource_desc(desc, expected):
    if expected is None:
        with pytest.raises(ValueError):
            ResourceDesc.parse(desc)
    else:
        assert ResourceDesc.parse(desc) == expected


def test_parse_rejects_trailing_newline():
    with pytest.raises(ValueError):
        ResourceDesc.parse("repo/type/tag\n")


def test_resource_desc_str_round_trip():
    desc = ResourceDesc("repo", "type", "tag")
    assert str(desc) == "repo/type/tag"
    assert ResourceDesc.parse(str(desc)) == desc


@pytest.fixture
def local_fs(tmp_path):
    return LocalFs(LocalFsRepoDesc(dir_path=str(tmp_path)))


def test_local_fs_creates_default_repo(tmp_path):
    root = tmp_path / "repo"
    LocalFs(LocalFsRepoDesc(dir_path=str(root)))
    assert (root / "default").is_dir()


def test_write_and_read_resource(local_fs):
    desc = ResourceDesc("default", "test", "test")
    local_fs.write_secret_resource(desc, TEST_DATA)
    assert local_fs.read_secret_resource(desc) == TEST_DATA


def test_write_places_file_on_disk(tmp_path, local_fs):
    desc = ResourceDesc("other", "kind", "name")
    local_fs.write_secret_resource(desc, b"abc")
    on_disk = (tmp_path / "other" / "kind" / "name").read_bytes()
    assert on_disk == b"abc"
    assert local_fs.read_secret_resource(desc) == on_disk


def test_read_missing_resource_fails(local_fs):
    with pytest.raises(FileNotFoundError):
        local_fs.read_secret_resource(ResourceDesc("default", "none", "here"))


def test_default_repo_desc():
    assert LocalFsRepoDesc().dir_path == DEFAULT_REPO_DIR_PATH


def test_repository_config_from_dict():
    config = repository_config_from_dict({"type": "LocalFs", "dir_path": "/tmp/x"})
    assert config == LocalFsRepoDesc(dir_path="/tmp/x")


def test_repository_config_dir_path_defaults_to_empty():
    assert repository_config_from_dict({"type": "LocalFs"}).dir_path == ""


@pytest.mark.parametrize("data", [{}, {"type": "Unknown"}, {"type": "LocalFs", "dir_path": 3}])
def test_repository_config_errors(data):
    with pytest.raises(ValueError):
        repository_config_from_dict(data)


@pytest.fixture
def storage(tmp_path):
    return ResourceStorage.from_config(LocalFsRepoDesc(dir_path=str(tmp_path)))


def test_handle_post_then_get(storage):
    assert storage.handle(b"value", "", "/default/key/one", "POST") == b""
    assert storage.handle(b"", "", "/default/key/one", "GET") == b"value"


def test_handle_rejects_path_without_slash(storage):
    with pytest.raises(ValueError, match="should start with"):
        storage.handle(b"", "", "default/key/one", "GET")


def test_handle_rejects_bad_desc(storage):
    with pytest.raises(ValueError, match="illegal ResourceDesc"):
        storage.handle(b"", "", "/default/key", "GET")


def test_handle_rejects_other_methods(storage):
    with pytest.raises(ValueError, match="Illegal HTTP method"):
        storage.handle(b"", "", "/default/key/one", "DELETE")


@pytest.mark.parametrize("method, expected", [("POST", True), ("GET", False), ("PUT", False)])
def test_validate_auth(storage, method, expected):
    assert storage.validate_auth(b"", "", "/a/b/c", method) is expected


@pytest.mark.parametrize("method, expected", [("GET", True), ("POST", False), ("PUT", False)])
def test_encrypted(storage, method, expected):
    assert storage.encrypted(b"", "", "/a/b/c", method) is expected


def test_reads_and_writes_are_counted(storage):
    desc = ResourceDesc("default", "counted", "res")
    writes_before = RESOURCE_WRITES_TOTAL.labels(str(desc)).value
    reads_before = RESOURCE_READS_TOTAL.labels(str(desc)).value
    storage.set_secret_resource(desc, b"x")
    storage.get_secret_resource(desc)
    storage.get_secret_resource(desc)
    assert RESOURCE_WRITES_TOTAL.labels(str(desc)).value == writes_before + 1
    assert RESOURCE_READS_TOTAL.labels(str(desc)).value == reads_before + 2


def test_from_config_wraps_os_errors(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_bytes(b"")
    with pytest.raises(RuntimeError, match="Failed to initialize Resource Storage"):
        ResourceStorage.from_config(LocalFsRepoDesc(dir_path=str(blocker / "sub")))