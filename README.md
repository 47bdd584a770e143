# flagstate

A thread-safe, in-memory store for feature flags that arrive from several
sources. Each flag records the source and selector it came from. When two
sources define the same flag, the source that comes later in the store's source
order wins. Every change returns notifications that describe what happened.

Everything lives in one module, `flagstate.store`.

## Installation

```
pip install flagstate
```

## Usage

```python
from flagstate.store import Flag, State

state = State(flag_sources=["file:base.json", "file:override.json"])

notifications, resync = state.merge(
    "file:base.json",
    "",
    {"new-ui": Flag(default_variant="off")},
    {"team": "web"},
)
# notifications == {"new-ui": {"type": "write", "source": "file:base.json"}}
# resync is False

flag, metadata = state.get("new-ui")
print(flag.default_variant, flag.source, metadata)
# off file:base.json {'team': 'web'}
```

## Types

- `Flag` is a frozen dataclass. Its fields are `state`, `default_variant`,
  `variants`, `targeting`, `source`, `selector` and `metadata`. `Flag.to_dict()`
  returns a mapping that is ready for JSON.
- `SourceDetails` is a frozen dataclass with `source` and `selector` fields.
- `NotificationType` is a string enum. Its members are `CREATE` (`"write"`),
  `UPDATE` (`"update"`) and `DELETE` (`"delete"`).
- `State` is a dataclass that holds `flags`, `flag_sources`, `source_details` and
  `metadata_per_source`. A re-entrant lock guards every method.

## Sources and priority

`State.has_priority(stored, new)` decides whether a flag from the `new` source
may replace one stored from the `stored` source. A source may always replace its
own flags. Otherwise the method scans `flag_sources` from last to first, and
whichever of the two sources it meets first wins. When neither source is listed,
the new source wins.

## Changing flags

These methods return a dict that maps flag keys to notifications of the form
`{"type": ..., "source": ...}`. The type is the value of a `NotificationType`.
Before a flag is stored, its `source` and `selector` are set to the ones passed
in.

- `add(source, selector, flags)` stores each flag. When the key already exists,
  it replaces the stored flag only if the source has priority. Each stored flag
  gets a `"write"` notification.
- `update(source, selector, flags)` replaces only flags that already exist and
  that the source has priority over. Unknown keys are logged and skipped.
- `delete_flags(source, flags)` drops the source's metadata and removes the named
  flags that the source has priority over. When `flags` is empty, it removes every
  flag whose source is `source`.
- `merge(source, selector, flags, metadata)` records `metadata` for the source.
  It then treats `flags` (which may be `None`) as the full current set for that
  source and selector. Stored flags with the same source and selector that are
  missing from `flags` are deleted. New keys are written. Existing flags are
  updated when the source has priority and the flag has changed; unchanged flags
  produce no notification. It returns `(notifications, resync_required)`, and
  `resync_required` is true when any flag was deleted.
- `set(key, flag)` and `delete(key)` store or remove a single flag directly, with
  no priority check and no notification.

## Reading

- `get(key)` returns `(flag, metadata)`. When the key is found, `metadata` is a
  copy of the metadata for the flag's source. When it is not found, `flag` is
  `None` and `metadata` is the combined metadata.
- `get_all()` returns `(flags, metadata)`: a copy of the flag mapping and the
  combined metadata.
- `metadata()` combines metadata from all sources. Keys that more than one
  source defines are left out.
- `get_metadata_for_source(source)` returns a copy of one source's metadata, or
  an empty dict.
- `selector_for_flag(flag)` returns the selector stored in `source_details` for
  the flag's source, or `""`.
- `to_json()` serialises the whole state to a JSON string. It raises
  `ValueError` when a value cannot be serialised.

## Logging

Skipped and refused changes are reported through the standard `logging` module
on the `flagstate.store` logger, at debug or warning level.

## What it does not do

`flagstate` only keeps flags in memory. It does not read flags from files or
remote sources, it does not watch sources for changes, it does not evaluate
flags or their targeting rules, and it provides no server or command-line tool.
Feeding the store and acting on its notifications are left to the caller.