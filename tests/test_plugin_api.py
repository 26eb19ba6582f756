import pytest

from trustee_kbs.plugin_api import ClientPlugin


def test_interface_cannot_be_instantiated():
    with pytest.raises(TypeError):
        ClientPlugin()


@pytest.mark.parametrize("method", ["handle", "validate_auth", "encrypted"])
def test_interface_names_each_abstract_method(method):
    with pytest.raises(TypeError, match=method):
        ClientPlugin()