"""Shared fixtures: a seeded SQLite catalog and an in-memory search engine."""
from __future__ import annotations

import fnmatch
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Set

import pytest
from elasticsearch import ConnectionError as EsConnectionError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from catalog_search import reindexer as reindexer_module
from catalog_search.database import (
    Base,
    Brand,
    Category,
    Product,
    ProductAttribute,
    ProductCategory,
    ProductDocument,
    ProductImage,
    ProductMetric,
    Series,
)


def _seed(session) -> None:
    session.add_all(
        [
            Brand(brand_id=1, name="Legrand"),
            Brand(brand_id=2, name="ABB"),
            Series(series_id=1, name="Valena"),
            Category(category_id=1, name="Кабели"),
            Category(category_id=2, name="Розетки"),
        ]
    )
    session.flush()
    session.add_all(
        [
            Product(
                product_id=1,
                external_id="X1",
                sku="SKU-100",
                name="Разъём питания",
                brand_id=2,
                unit="шт",
                min_sale=1,
                created_at=datetime(2024, 1, 10, 9, 30),
                updated_at=datetime(2024, 2, 1, 12, 0),
            ),
            Product(product_id=2, external_id="A-200", sku="X1", name="Адаптер", brand_id=2),
            Product(product_id=3, external_id="B-300", sku="B300", name="X1 Cable", brand_id=1),
            Product(
                product_id=4,
                external_id="ВВГ-3х2.5",
                sku="VVG325",
                name="Кабель ВВГнг 3х2.5",
                description="Силовой   кабель\nмедный",
                unit="м",
                weight=0.12,
            ),
            Product(
                product_id=5,
                external_id="LG-774",
                sku="774",
                name="Розетка Legrand Valena",
                brand_id=1,
                series_id=1,
                dimensions="80x80x40",
            ),
        ]
    )
    session.flush()
    session.add_all(
        [
            ProductCategory(product_id=4, category_id=1),
            ProductCategory(product_id=5, category_id=2),
            ProductImage(product_id=5, url="https://cdn.example/774-side.jpg", is_main=False, sort_order=1),
            ProductImage(product_id=5, url="https://cdn.example/774-main.jpg", is_main=True, sort_order=5),
            ProductImage(product_id=5, url="https://cdn.example/774-back.jpg", is_main=False, sort_order=2),
            ProductAttribute(product_id=4, name="Сечение", value="2.5", unit="мм²", sort_order=2),
            ProductAttribute(product_id=4, name="Жил", value="3", unit=None, sort_order=1),
            ProductDocument(product_id=5, type="certificate", url="c1.pdf"),
            ProductDocument(product_id=5, type="certificate", url="c2.pdf"),
            ProductDocument(product_id=5, type="manual", url="m1.pdf"),
            ProductMetric(product_id=5, popularity_score=10.0),
            ProductMetric(product_id=2, popularity_score=5.0),
        ]
    )
    session.commit()


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    with Session(engine) as session:
        _seed(session)
    yield engine
    engine.dispose()


@pytest.fixture
def broken_db_engine():
    """An engine whose catalog tables do not exist."""
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    yield engine
    engine.dispose()


class FakeIndices:
    def __init__(self, owner: "FakeElasticsearch") -> None:
        self._owner = owner
        self.store: Dict[str, Dict[str, Any]] = {}
        self.fail_create = False
        self.fail_update_aliases = False
        self.fail_delete: Set[str] = set()
        self.fail_delete_alias = False
        self.fail_put_alias = False
        self.fail_get_alias_after_swap = False
        self.update_alias_calls: List[List[dict]] = []

    def _aliases(self, index: str) -> Set[str]:
        return self.store[index]["aliases"]

    def create(self, index: str, settings: Any = None, mappings: Any = None) -> dict:
        if self.fail_create:
            raise EsConnectionError("create failed")
        self.store[index] = {"docs": {}, "aliases": set(), "settings": settings, "mappings": mappings}
        return {"acknowledged": True, "index": index}

    def get(self, index: str) -> dict:
        return {name: {"settings": data["settings"]} for name, data in self.store.items() if fnmatch.fnmatch(name, index)}

    def get_alias(self, name: str) -> dict:
        if self.fail_get_alias_after_swap and self.update_alias_calls:
            raise EsConnectionError("get_alias failed")
        return {
            index: {"aliases": {name: {}}}
            for index, data in self.store.items()
            if name in data["aliases"]
        }

    def update_aliases(self, actions: List[dict]) -> dict:
        self.update_alias_calls.append(actions)
        if self.fail_update_aliases:
            raise EsConnectionError("update_aliases failed")
        for action in actions:
            if "remove" in action:
                body = action["remove"]
                self._aliases(body["index"]).discard(body["alias"])
            if "add" in action:
                body = action["add"]
                self._aliases(body["index"]).add(body["alias"])
        return {"acknowledged": True}

    def put_alias(self, index: str, name: str) -> dict:
        if self.fail_put_alias:
            raise EsConnectionError("put_alias failed")
        self._aliases(index).add(name)
        return {"acknowledged": True}

    def delete_alias(self, index: str, name: str) -> dict:
        if self.fail_delete_alias:
            raise EsConnectionError("delete_alias failed")
        self._aliases(index).discard(name)
        return {"acknowledged": True}

    def delete(self, index: str) -> dict:
        if index in self.fail_delete:
            raise EsConnectionError(f"delete {index} failed")
        self.store.pop(index, None)
        return {"acknowledged": True}

    def refresh(self, index: str) -> dict:
        return {"_shards": {"failed": 0}}

    def add_generation(self, name: str, *aliases: str) -> None:
        self.store[name] = {"docs": {}, "aliases": set(aliases), "settings": None, "mappings": None}

    def alias_targets(self, alias: str) -> List[str]:
        return sorted(name for name, data in self.store.items() if alias in data["aliases"])


class FakeCluster:
    def __init__(self) -> None:
        self.status = "green"

    def health(self, timeout: Optional[str] = None) -> dict:
        return {"status": self.status}


class FakeElasticsearch:
    """Just enough of the client surface for the probe, adapter and reindexer."""

    def __init__(self) -> None:
        self.indices = FakeIndices(self)
        self.cluster = FakeCluster()
        self.reachable = True
        self.search_response: Any = {"took": 1, "hits": {"total": {"value": 0}, "hits": []}}
        self.search_error: Optional[Exception] = None
        self.search_calls: List[dict] = []
        self.reject_ids: Set[int] = set()
        self.fail_bulk = False
        self.options_calls: List[dict] = []

    def options(self, **kwargs: Any) -> "FakeElasticsearch":
        self.options_calls.append(kwargs)
        return self

    def ping(self) -> bool:
        return self.reachable

    def search(self, index: str, body: dict) -> Any:
        self.search_calls.append({"index": index, "body": body})
        if self.search_error is not None:
            raise self.search_error
        return self.search_response

    def close(self) -> None:
        pass

    def bulk_index(self, actions: Iterable[dict]) -> tuple[int, list]:
        if self.fail_bulk:
            raise EsConnectionError("bulk failed")
        ok = 0
        errors = []
        for action in actions:
            doc_id = action["_id"]
            if doc_id in self.reject_ids:
                errors.append({"index": {"_id": doc_id, "status": 400, "error": {"type": "mapper_parsing_exception"}}})
                continue
            self.indices.store[action["_index"]]["docs"][doc_id] = action["_source"]
            ok += 1
        return ok, errors


@pytest.fixture
def fake_es(monkeypatch) -> FakeElasticsearch:
    es = FakeElasticsearch()

    def fake_bulk(client, actions, raise_on_error=True, stats_only=False, **kwargs):
        return client.bulk_index(actions)

    monkeypatch.setattr(reindexer_module.helpers, "bulk", fake_bulk)
    return es


class StepClock:
    """Returns strictly increasing datetimes, one step per call."""

    def __init__(self, start: datetime, step: timedelta = timedelta(minutes=1)) -> None:
        self._current = start
        self._step = step

    def __call__(self) -> datetime:
        value = self._current
        self._current += self._step
        return value


@pytest.fixture
def step_clock() -> StepClock:
    return StepClock(datetime(2026, 3, 1, 12, 0, 0))
