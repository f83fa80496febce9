"""Chart, table and diagram visualizations rendered by the frontend.

Each function registers the visualization with the running script, which
attaches it to the script result under ``__visualizations``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from aibase.core.exceptions import ToolError
from aibase.extensions.runtime import register_visualization


def _require(viz_type: str, **fields: Any) -> None:
    missing = [name for name, value in fields.items() if value is None or value == ""]
    if missing:
        raise ToolError(f"{viz_type} requires: {', '.join(missing)}", tool=viz_type)


def _args(**fields: Any) -> Dict[str, Any]:
    return {key: value for key, value in fields.items() if value is not None}


async def show_chart(
    title: str,
    chart_type: str,
    data: Dict[str, Any],
    description: Optional[str] = None,
    save_to: Optional[str] = None,
) -> Dict[str, Any]:
    """Display a chart.

    ``data`` holds ``xAxis`` labels and ``series`` of ``{name, data}``;
    ``chart_type`` is bar, line, pie, area, ...
    """
    _require("show-chart", title=title, chart_type=chart_type, data=data)
    return register_visualization(
        "show-chart",
        _args(title=title, description=description, chartType=chart_type, data=data, saveTo=save_to),
    )


async def show_table(
    title: str,
    columns: List[Dict[str, str]],
    data: List[Dict[str, Any]],
    description: Optional[str] = None,
    save_to: Optional[str] = None,
) -> Dict[str, Any]:
    """Display tabular data; ``columns`` are ``{key, label}`` pairs."""
    _require("show-table", title=title, columns=columns, data=data)
    return register_visualization(
        "show-table",
        _args(title=title, description=description, columns=columns, data=data, saveTo=save_to),
    )


async def show_mermaid(
    title: str,
    code: str,
    description: Optional[str] = None,
    save_to: Optional[str] = None,
) -> Dict[str, Any]:
    """Display a Mermaid diagram."""
    _require("show-mermaid", title=title, code=code)
    return register_visualization(
        "show-mermaid",
        _args(title=title, description=description, code=code, saveTo=save_to),
    )
