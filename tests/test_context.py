from __future__ import annotations

from checkpointed_etl.pipeline.context import ExecutionContext


class _Handle:
    closed = False

    def close(self) -> None:
        self.closed = True


def test_set_get_has_forget() -> None:
    context = ExecutionContext({"a": 1})
    context.set("b", 2)

    assert context.get("a") == 1
    assert context.get("missing", "default") == "default"
    assert context.has("b")
    assert "b" in context
    assert len(context) == 2

    context.forget("a")
    assert not context.has("a")
    assert list(context.keys()) == ["b"]


def test_merge_keeps_insertion_order() -> None:
    context = ExecutionContext()
    context.merge({"z": 1, "a": 2})

    assert context.to_dict() == {"z": 1, "a": 2}
    assert list(context.to_dict()) == ["z", "a"]


def test_transient_keys_are_not_serialized() -> None:
    context = ExecutionContext()
    handle = _Handle()
    context.set("storage_path", "/tmp/x.sqlite")
    context.set("temporary_storage", handle, transient=True)

    assert context.get("temporary_storage") is handle
    assert context.to_dict() == {"storage_path": "/tmp/x.sqlite"}

    restored = ExecutionContext.from_dict(context.to_dict())
    assert not restored.has("temporary_storage")


def test_setting_again_without_transient_persists_key() -> None:
    context = ExecutionContext()
    context.set("value", 1, transient=True)
    context.set("value", 2)

    assert context.to_dict() == {"value": 2}


def test_release_closes_transient_values() -> None:
    context = ExecutionContext()
    handle = _Handle()
    context.set("temporary_storage", handle, transient=True)
    context.set("plain", "kept")

    context.release()

    assert handle.closed
    assert not context.has("temporary_storage")
    assert context.get("plain") == "kept"


def test_checkpoint_invokes_bound_hook() -> None:
    context = ExecutionContext()
    calls = []

    context.checkpoint()

    context.bind_checkpoint(lambda: calls.append(context.to_dict()))
    context.set("last_processed_line", 100)
    context.checkpoint()

    assert calls == [{"last_processed_line": 100}]
