"""
MediaScrapeLang: a small language for directed crawls that follow links,
extract variables and save media into templated paths.
"""
from msl.engine import Engine, ExecutionSummary, execute
from msl.errors import EngineError, ScriptSyntaxError
from msl.model import Script, format_script
from msl.parser import parse

__version__ = "0.1.0"
__all__ = [
    "Engine",
    "EngineError",
    "ExecutionSummary",
    "Script",
    "ScriptSyntaxError",
    "execute",
    "format_script",
    "parse",
]
