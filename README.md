# devcycle

Building blocks for a server-side DevCycle feature-flag client:

- `devcycle.config_manager` downloads the environment configuration from the
  config CDN. It retries on failures, sends the last ETag and can keep
  polling in a background thread.
- `devcycle.event_manager` flushes queued analytics events in batches to the
  events API. It flushes on a timer, when the queue reaches a size limit, or
  when asked to.
- `devcycle.transport` sends authenticated JSON requests to the cloud
  bucketing API. It retries with exponential backoff and turns error
  responses into exceptions.
- `devcycle.variables` holds the rules for variable default values and types.
- `devcycle.request` encodes request bodies, decodes response bodies and
  picks a Content-Type.
- `devcycle.log` provides a replaceable, process-wide logger.

## What this package does not do

The package has no single client object that ties these pieces together. It
also has no bucketing engine. Nothing here parses a downloaded configuration
or works out which variation a user gets. Nothing here stores events either.
You supply those parts yourself:

- a `ConfigReceiver` that does something with the raw configuration bytes;
- an `InternalEventQueue` that holds events and hands out `FlushPayload`
  batches.

## Installation

```
pip install .
```

Install the test dependencies as well:

```
pip install ".[test]"
```

## Logging

Every message goes through one global logger.

`DefaultLogger` is the logger in use at start. It forwards each message to the
standard library logger named `devcycle`, at the matching level: `printf` and
`infof` log at INFO, `debugf` at DEBUG, `warnf` at WARNING and `errorf` at
ERROR. `errorf` also returns the message wrapped in an exception.

Printf-style verbs such as `%v` and `%w` are rendered as `%s`.

`DiscardLogger` drops every message. It counts the dropped messages in its
`discarded` attribute.

Any object with the `Logger` methods `printf`, `infof`, `debugf`, `warnf` and
`errorf` can be installed:

```python
from devcycle.log import DiscardLogger, get_logger, set_logger, warnf

quiet = DiscardLogger()
set_logger(quiet)
warnf("this message is dropped: %s", "quietly")
assert get_logger() is quiet
assert quiet.discarded == 1
```

`set_logger(None)` raises `ValueError`.

## Variable values and types

A default value decides a variable's type.

`convert_default_value` widens integers to floats, so `3` and `3.0` both
count as a Number. Booleans are left as they are.

`variable_type_from_value` returns a `VariableType`: `BOOLEAN`, `NUMBER`,
`STRING` or `JSON`. A `dict` counts as `JSON`.

```python
from devcycle.variables import (
    VariableType,
    compare_types,
    convert_default_value,
    variable_type_from_value,
)

default = convert_default_value(3)
assert variable_type_from_value("max-items", default, False) is VariableType.NUMBER
assert compare_types(default, 4.5)
```

Any other default raises `TypeError`. A `None` default returns `None`, but
only when `allow_nil` is true; otherwise it raises `TypeError` too.

The module has three more helpers:

- `sdk_key_is_valid(key)` checks that a key starts with `server` or
  `dvc_server`.
- `exponential_backoff(attempt)` gives the retry delay in milliseconds:
  `2**attempt * 100`, plus up to 20% random jitter.
- `sdk_variable_value(variable_type, bool_value, double_value, string_value)`
  picks the value that matches the type. For JSON it parses `string_value`.
  It returns `None` for an unknown type or for invalid JSON.

`VERSION` holds the SDK version string.

## Loading the configuration

Give `EnvironmentConfigManager` an object that implements
`ConfigReceiver.store_config`. Each time a new configuration arrives, the
manager calls it with the raw JSON bytes and the ETag:

```python
import os

from devcycle.config_manager import ConfigReceiver, EnvironmentConfigManager


class KeepLatest(ConfigReceiver):
    def __init__(self):
        self.config = None

    def store_config(self, config, etag):
        self.config = config


receiver = KeepLatest()
manager = EnvironmentConfigManager(
    sdk_key=os.environ["DVC_SERVER_SDK_KEY"],
    receiver=receiver,
    config_cdn_base_path="https://config-cdn.devcycle.com",
    request_timeout=10.0,
    session=None,
)
manager.initial_fetch()
manager.start_polling(10.0)
try:
    if manager.has_config():
        ...
finally:
    manager.close()
```

The configuration is fetched from `config_url()`, which is
`<base>/config/v1/server/<sdk_key>.json`. `fetch_config` retries
`CONFIG_RETRIES` times (once). Responses are handled as follows:

- **200:** the body must be valid JSON. It is passed to the receiver, and its
  ETag is remembered and sent as `If-None-Match` next time.
- **304:** nothing happens.
- **403:** polling stops and `ConfigFetchError` is raised.
- **5xx, after every retry:** only logged, no error is raised.
- **Connection failure or any other status, after every retry:**
  `ConfigFetchError` is raised.
- **Invalid JSON:** `ConfigFetchError` is raised.

While polling, errors are logged and polling carries on. `close()` stops the
polling thread and waits for it.

## Flushing events

`EventManager` wraps an `InternalEventQueue`. `flush_events` posts every
pending `FlushPayload` to `<events_api_base_path>/v1/events/batch` as
`{"batch": records}`. It reports each payload id back to the queue in a
`FlushResult`:

- a 201 response is a success;
- a 5xx response is a failure that can be retried;
- a connection error or any other response is a failure that is not retried.

Queuing behaves as follows:

- When the queue already holds `flush_event_queue_size` events,
  `queue_event` wakes the background thread to flush.
- Queuing after `close()` raises `EventQueueClosedError`.
- If the internal queue raises `QueueFullError`, it is raised again with the
  dropped event in its message.
- `queue_variable_defaulted_event(key)` queues an aggregate event of type
  `aggVariableDefaulted`.

Flushing in the background:

- The background thread flushes every `flush_interval` seconds.
- It is not started when both `disable_automatic_event_logging` and
  `disable_custom_event_logging` are true.
- `close()` stops the thread and then flushes whatever remains.

```python
from devcycle.event_manager import EventManager

events = EventManager(
    internal_queue=my_queue,  # an InternalEventQueue implementation
    sdk_key=sdk_key,
    events_api_base_path="https://events.devcycle.com",
    flush_interval=10.0,
    flush_event_queue_size=1000,
    disable_automatic_event_logging=False,
    disable_custom_event_logging=False,
    session=None,
)
events.queue_variable_defaulted_event("my-variable")
events.flush_events()
flushed, reported, dropped = events.metrics()
events.close()
```

## Calling the bucketing API

`ApiTransport` sends requests to the cloud bucketing API. Every request
carries the SDK key in `Authorization`, JSON `Content-Type` and `Accept`
headers, a `User-Agent`, and any `default_headers`.

`build_url` joins the base path and the path, and sorts the query by key.
With `enable_edge_db` set, it adds `enableEdgeDB=true` to the query.

`perform_request(path, method, body)` sends the request up to `max_attempts`
times (default 6):

- Connection failures and 5xx responses are retried, with
  `exponential_backoff` between attempts.
- A 5xx response on the last attempt is returned.
- A connection failure on the last attempt is raised.

`error_from_response(status_code, status, body, content_type)` builds a
`GenericError` that carries the raw `body` and the decoded `model`:

- For a 5xx status it logs a warning and returns `None`.
- If the body cannot be decoded, the error's message is the decoding failure.

`change_base_path` points the transport at another host.

## Request bodies

- `encode_body(body, content_type)` passes bytes, strings and readable
  objects through unchanged. It encodes other bodies as JSON or XML,
  following the content type. An empty result raises `ValueError`.
- `decode(body, content_type)` parses XML when the content type contains
  `application/xml`, and JSON otherwise.
- `detect_content_type(body)` returns:
  - plain text for strings;
  - JSON for mappings, lists, tuples and dataclass instances;
  - a type sniffed from the content for bytes.

## Running the tests

```
pytest
```