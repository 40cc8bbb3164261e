from pathlib import Path
import sys

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from ig_crawler import IGCrawler
from fakes import FakeResponse, FakeSession


@pytest.fixture
def make_crawler(tmp_path, monkeypatch):
    monkeypatch.delenv("DATA_DIR", raising=False)
    config_path = Path(__file__).resolve().parents[1] / "config.example.json"
    data_dir = tmp_path / "crawler_data"

    def factory(handler=None):
        session = FakeSession(handler or (lambda call: FakeResponse(404)))
        crawler = IGCrawler(data_dir=str(data_dir), config_file=str(config_path), session=session)
        crawler.fetcher.requests_per_minute = 0
        return crawler

    return factory


@pytest.fixture
def crawler(make_crawler):
    return make_crawler()
