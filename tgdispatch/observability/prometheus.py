from __future__ import annotations

from typing import Dict, List, Tuple

from .metrics import list_counters, list_counters_labelled

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


def _escape_label_value(val: str) -> str:
    return val.replace("\\", "\\\\").replace("\"", "\\\"").replace("\n", "\\n")


def export_text(namespace: str = "tgdispatch") -> str:
    """Render in-process counters as Prometheus text exposition.

    Plain and labelled samples of the same name are grouped under a single
    ``# TYPE`` header. Zero-valued counters are skipped.
    """
    grouped: Dict[str, List[Tuple[str, int]]] = {}
    for name, val in list_counters():
        if val:
            grouped.setdefault(name, []).append(("", val))
    for name, labels, val in list_counters_labelled():
        if not val:
            continue
        label_str = ",".join(f"{k}=\"{_escape_label_value(v)}\"" for k, v in labels)
        grouped.setdefault(name, []).append((f"{{{label_str}}}", val))

    prefix = f"{namespace}_" if namespace else ""
    lines: List[str] = []
    for name in sorted(grouped):
        metric = prefix + name
        lines.append(f"# TYPE {metric} counter")
        lines.extend(f"{metric}{labels} {val}" for labels, val in grouped[name])
    return "\n".join(lines) + ("\n" if lines else "")
