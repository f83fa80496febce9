"""Charts rendered by the frontend."""

from aibase.tools.runtime import visualization


async def show_chart(title, chart_type, data, description=None, save_to=None):
    """Display a chart. ``data`` is ``{"xAxis": [...], "series": [{"name", "data"}]}``."""
    return await visualization.show_chart(
        title, chart_type, data, description=description, save_to=save_to
    )
