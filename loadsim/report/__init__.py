from loadsim.report.summary import render

__all__ = ["render"]
