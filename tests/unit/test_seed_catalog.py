import pytest
from sqlalchemy import select
from core.exceptions import ValidationError
from models.catalog import SkuMaster
from scripts import seed_catalog as seeding


def test_read_csv_catalog(tmp_path):
    path = tmp_path / "catalog.csv"
    path.write_text(
        "SKU Code,Description,Brand\n"
        " iphone13-128gb-black ,iPhone 13 128GB Black,Apple\n"
        "GALAXYS21-128GB-BLACK,,Samsung\n"
        ",orphan row,\n"
        "IPHONE13-128GB-BLACK,iPhone 13 (refurb),Apple\n",
        encoding="utf-8",
    )

    rows = seeding.read_catalog(path)

    assert rows == [
        {"sku_code": "GALAXYS21-128GB-BLACK", "description": None, "brand": "Samsung"},
        {"sku_code": "IPHONE13-128GB-BLACK", "description": "iPhone 13 (refurb)", "brand": "Apple"},
    ]


def test_read_csv_without_optional_columns(tmp_path):
    path = tmp_path / "catalog.csv"
    path.write_text("sku_code\nWATCH-SERIES7-45-BLACK\n", encoding="utf-8")

    assert seeding.read_catalog(path) == [
        {"sku_code": "WATCH-SERIES7-45-BLACK", "description": None, "brand": None},
    ]


def test_read_text_catalog(tmp_path):
    path = tmp_path / "catalog.txt"
    path.write_text("# exported catalog\niphone13-128gb-black\n\nTAB-IPADAIR-64GB-GRAY-WIFI\n", encoding="utf-8")

    assert [r["sku_code"] for r in seeding.read_catalog(path)] == [
        "IPHONE13-128GB-BLACK",
        "TAB-IPADAIR-64GB-GRAY-WIFI",
    ]


@pytest.mark.parametrize("content", ["code,brand\nX,Y\n", ""])
def test_unusable_csv_is_rejected(tmp_path, content):
    path = tmp_path / "catalog.csv"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ValidationError):
        seeding.read_catalog(path)


def test_missing_file_is_rejected(tmp_path):
    with pytest.raises(ValidationError) as exc_info:
        seeding.read_catalog(tmp_path / "missing.csv")

    assert "missing.csv" in exc_info.value.context["file_path"]


@pytest.mark.asyncio
async def test_seed_catalog_upserts(session_factory, monkeypatch):
    monkeypatch.setattr(seeding, "async_session_maker", session_factory)

    await seeding.seed_catalog([{"sku_code": "IPHONE13-128GB-BLACK", "description": None, "brand": None}])
    count = await seeding.seed_catalog([
        {"sku_code": "IPHONE13-128GB-BLACK", "description": "iPhone 13", "brand": "Apple"},
        {"sku_code": "IPHONE13-256GB-BLACK", "description": None, "brand": "Apple"},
    ], chunk_size=1)

    assert count == 2
    async with session_factory() as session:
        rows = (await session.execute(select(SkuMaster).order_by(SkuMaster.sku_code))).scalars().all()
    assert [(r.sku_code, r.description) for r in rows] == [
        ("IPHONE13-128GB-BLACK", "iPhone 13"),
        ("IPHONE13-256GB-BLACK", None),
    ]
