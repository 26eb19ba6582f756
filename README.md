# trustee_kbs

Building blocks for a key broker service. A key broker service keeps secret
resources and hands them to confidential workloads through client plugins.

The package is a library. It has no command-line entry point.

## Modules

- `trustee_kbs.plugin_api` defines `ClientPlugin`, the abstract interface
  for every plugin. A plugin implements `handle(body, query, path, method)`,
  which returns the response body as bytes. It also implements
  `validate_auth(...)`, which says whether the request needs admin
  authentication, and `encrypted(...)`, which says whether the response is to
  be encrypted with the TEE key.
- `trustee_kbs.resource` handles secret resources.
  - `ResourceDesc.parse("repo/type/tag")` parses a resource path. It raises
    `ValueError` if the format is illegal. A segment starts with a letter,
    digit, `_` or `-`, and may contain `.` after the first character.
  - `LocalFs` keeps resources as files under a directory. Its configuration is
    `LocalFsRepoDesc(dir_path=...)`, and the default directory is
    `/opt/confidential-containers/kbs/repository`. When `LocalFs` is created
    it makes the directory and a `default` repository inside it.
  - `repository_config_from_dict` reads a repository configuration. The only
    accepted `type` is `LocalFs`.
  - `ResourceStorage` is the resource plugin:
    - `POST /<repo>/<type>/<tag>` stores the request body and returns empty
      bytes.
    - `GET /<repo>/<type>/<tag>` returns the stored bytes.
    - Any other method raises `ValueError`.
    - `validate_auth` is true for `POST`, and `encrypted` is true for `GET`.
    - Every read and write is counted in the resource metrics.
- `trustee_kbs.nebula_ca` issues Nebula overlay-network credentials. It runs
  the external `nebula-cert` program, which must be version 1.9.5 or later.
  - `NebulaCaPlugin.from_config(NebulaCaPluginConfig(...))` first checks the
    `nebula-cert` version. It then creates a self-signed CA under
    `<work_dir>/ca/` if neither `ca.crt` nor `ca.key` exists.
  - The plugin serves only `GET /credential?name=...&ip=...`. It also accepts
    the optional `duration`, `groups` and `subnets` parameters.
  - The response is JSON with `node_crt`, `node_key` and `ca_crt`, each
    written as an array of byte values.
  - `validate_auth` is always false, and `encrypted` is always true.
- `trustee_kbs.plugins` builds plugins from configuration.
  - `PluginsConfig.from_dict` reads data tagged by its `name` key. The
    accepted names are `sample`, `resource` and `nebula-ca`, or `Sample`,
    `ResourceStorage` and `NebulaCaPlugin`.
  - `PluginsConfig.build` creates the plugin. It raises `RuntimeError` if the
    plugin fails to initialise.
  - `PluginManager.from_configs` builds every plugin and stores each one under
    its name. `PluginManager.get(name)` returns the plugin, or `None` if there
    is none.
  - `Sample` is a minimal plugin that always answers
    `b"sample plugin response"`.
- `trustee_kbs.metrics` provides `Counter`, `CounterVec`, `Histogram`,
  `Registry` and `exponential_buckets`.
  - It defines the service metrics: `RESOURCE_READS_TOTAL`,
    `RESOURCE_WRITES_TOTAL`, `REQUEST_TOTAL`, `REQUEST_DURATION`,
    `REQUEST_SIZES` and `RESPONSE_SIZES`.
  - `export_metrics()` renders them in the Prometheus text exposition format.
  - Only the resource counters are updated by the package itself. The HTTP
    metrics are there for the caller to update.

## Installation

```
pip install trustee-kbs
```

## Example

```python
from trustee_kbs.metrics import export_metrics
from trustee_kbs.plugins import PluginManager, PluginsConfig

configs = [
    PluginsConfig.from_dict({"name": "resource", "type": "LocalFs", "dir_path": "/tmp/repo"}),
    PluginsConfig.from_dict({"name": "sample", "item": "value"}),
]
manager = PluginManager.from_configs(configs)

resource = manager.get("resource")
resource.handle(b"secret bytes", "", "/default/key/one", "POST")
print(resource.handle(b"", "", "/default/key/one", "GET"))  # b'secret bytes'

print(export_metrics())
```

## What this package does not do

The package does not include:

- an HTTP server;
- admin authentication;
- attestation or attestation token verification;
- a resource access policy engine;
- encryption of responses to the TEE key.

`validate_auth` and `encrypted` only report what a request needs. Acting on
that answer is the caller's job. Resources can only be stored on the local
filesystem.

## Running the tests

```
pip install -e ".[test]"
pytest
```