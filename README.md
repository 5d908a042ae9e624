# wingsd

A library of building blocks for a game server daemon that works on behalf
of a control panel.

- `wingsd.replacements` and `wingsd.config_file` rewrite a server's
  configuration file from a list of find/replace rules.
- `wingsd.remote`, `wingsd.remote_types` and `wingsd.remote_errors` form a
  client for the panel's remote API.
- `wingsd.tokens` verifies signed JWTs and tracks one-time tokens.
- `wingsd.websocket_auth` holds websocket messages and the token checks used
  on a console websocket.

## Installation

```
pip install .
```

To install with the test dependencies:

```
pip install .[test]
```

## Rewriting a configuration file

`ConfigurationFile.from_dict` reads a definition with `file`, `parser` and
`replace` keys. If the `replace` list cannot be read, a warning is logged and
no replacements are applied.

```python
from wingsd.config_file import ConfigurationFile

cfg = ConfigurationFile.from_dict({
    "file": "server.properties",
    "parser": "properties",
    "replace": [
        {"match": "server-port", "replace_with": 25565},
        {"match": "server-ip", "replace_with": "{{config.docker.interface}}"},
    ],
})

daemon_settings = {"docker": {"interface": "172.18.0.1"}}
cfg.parse("/srv/data/server.properties", daemon_settings, False)
```

`ConfigurationParser` names the supported formats: `file`, `yaml` (`yml` is
also accepted), `properties`, `ini`, `json` and `xml`. A parser name outside
this list leaves the file untouched. If the file is missing, it is created
along with its directory.

Format notes:

- **properties**: leading comment lines are kept. Non-ASCII characters are
  written back as escape sequences. A rule with `if_value` changes a key only
  when the key already holds that value.
- **json** and **yaml**: a `match` is a dotted path. One `key[index]` array
  element is allowed in the path. A single `.*` wildcard applies the rest of
  the path to every child.
- **ini**: `section.key` sets a key in a section, and a bare `key` sets a key
  in the default section.
- **xml**: the path's elements are created when missing. A value of the form
  `[attr='value']` sets an attribute instead of the element text.
- **file**: every line that starts with `match` is replaced with the rule's
  literal value.

A string value that contains `{{config.some.key}}` is looked up in the
settings mapping passed to `parse`, with each key converted to snake case.
See `lookup_configuration_value`. The lower-level helpers
`iterate_over_json`, `set_value_at_path` and `ConfigurationFileReplacement`
are in `wingsd.replacements`.

## Talking to the panel

```python
from wingsd.remote import Client

client = Client("https://panel.example.com", token_id="node-id", token="token")
servers = client.get_servers(50)
config = client.get_server_configuration(servers[0].uuid)
```

`Client` sends requests to `<base>/api/remote` with the bearer header
`<token_id>.<token>`. If the panel returns a 5xx response or the connection
fails, the client retries with exponential backoff for up to about 30
seconds. Passing `max_attempts` also caps the number of retries. A 4xx
response is raised at once.

The client has these methods:

- `get_servers`
- `reset_servers_state`
- `get_server_configuration`
- `get_installation_script`
- `set_installation_status`
- `set_archive_status`
- `set_transfer_status`
- `validate_sftp_credentials`
- `get_backup_remote_upload_urls`
- `set_backup_status`
- `send_restoration_status`
- `send_activity_logs`

Errors from the panel are raised as `wingsd.remote_errors.RequestError`.
`is_request_error` and `as_request_error` find such an error in an
exception chain. If the panel rejects SFTP credentials with a 4xx response,
`validate_sftp_credentials` raises `SftpInvalidCredentialsError`.

## Tokens

```python
from wingsd.tokens import FilePayload, parse_token

payload = parse_token(raw_jwt, FilePayload, "secret")
if payload.is_unique_request():
    ...
```

`parse_token` checks the HS256 signature and the expiry. On failure it
raises `TokenError`. The one-time payloads are `BackupPayload`,
`FilePayload` and `UploadPayload`. Each `unique_id` is accepted once within
an hour. `deny_jti` rejects every websocket token with that JTI issued
before the call. Websocket tokens issued before the process started are
always rejected.

## Websocket tokens

`wingsd.websocket_auth.new_token_payload(token, secret)` parses a
`WebsocketPayload`. It raises a `JwtError` subclass when the token is
denylisted or lacks the `websocket.connect` permission. To recheck a stored
payload against a server UUID, call `token_valid(payload, server_uuid)`.
`is_jwt_error` reports whether an exception came from one of these checks
or from an expired token. `Message` converts socket events to and from
JSON. `get_error_message` tags a message with a fresh UUID.

## What this package does not do

It has no command to run, no HTTP or websocket server, no request routing,
and no server, container or file management. It provides the pieces above
for a daemon to use.

## Running the tests

```
pytest
```