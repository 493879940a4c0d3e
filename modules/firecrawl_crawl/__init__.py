from . import lib  # so: from modules.firecrawl_crawl import lib
from .main import run, run_map  # so: from modules.firecrawl_crawl import run

__all__ = ["lib", "run", "run_map"]
