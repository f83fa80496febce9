from aibase.tools.runtime import visualization

exports = {"show_table": visualization.show_table}
