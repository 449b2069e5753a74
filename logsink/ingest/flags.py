from typing import Any, Dict, Iterable, List


def flag_haystack(event: Dict[str, Any]) -> str:
    fn = event.get("function")
    if not isinstance(fn, dict):
        fn = {}
    parts = [fn.get("type") or "", fn.get("path") or "", event.get("status") or ""]
    return " ".join(str(p) for p in parts).lower().strip()


def match_flags(flags: Iterable, event: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Return one derived "flagged" event per active flag rule matching `event`.

    `flags` are FlagRule rows (or anything with pattern/name/is_active).
    The input event is left untouched; derived events are shallow copies.
    """
    if not isinstance(event, dict):
        return []
    haystack = flag_haystack(event)
    derived = []
    for flag in flags:
        if not flag.is_active or not flag.pattern:
            continue
        if flag.pattern.lower() in haystack:
            derived.append({
                **event,
                "topic": "flagged",
                "flag": flag.name,
                "original_topic": event.get("topic"),
            })
    return derived
