"""Shared pytest fixtures and utilities for GestiArt tests."""

from __future__ import annotations

import argparse
import os
import sys
import tempfile
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterable, Iterator

import pytest

# Ensure the source package is importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

# Keep test runs from writing into the repository's .logs folder.
os.environ.setdefault("GESTIART_LOG_DIR", str(Path(tempfile.gettempdir()) / "gestiart-test-logs"))

from gestiart import cli, constants, core_logic, data_manager  # noqa: E402
from gestiart.data_manager import ProductRow  # noqa: E402
from gestiart.setup_excel import DEMO_CATALOG, create_master_workbook  # noqa: E402
from gestiart.stores import InMemoryProductStore, InMemorySaleStore  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "ShopName = {shop_name}\n"
    "SchemaVersion = {schema_version}\n"
    "Backend = {backend}\n\n"
    "[Invoices]\n"
    "Prefix = {prefix}\n"
    "Currency = {currency}\n"
)

# The product used throughout the worked examples: price 1000, stock 5.
PRODUCT_P = ProductRow("P", "Panier tressé", Decimal("1000"), 5, "artisan-9", "Vannerie")


@dataclass(frozen=True)
class ConfigBundle:
    """Config file plus the workbook it points at."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    shop_name: str
    backend: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialised workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        products: Iterable[ProductRow] = (PRODUCT_P, *DEMO_CATALOG),
        filename: str = "gestiart_data.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        return create_master_workbook(base_dir / filename, products=products, overwrite=True)

    return _create_workbook


@pytest.fixture
def workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Create config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        shop_name: str = "GestiArt Test",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        backend: str = "workbook",
        prefix: str = "FACT",
        currency: str = "FCFA",
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_dir_name
        workbook_path = workbook_factory(subdir=bundle_dir_name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                shop_name=shop_name,
                schema_version=schema_version,
                backend=backend,
                prefix=prefix,
                currency=currency,
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            shop_name=shop_name,
            backend=backend,
        )

    return _create_config


@pytest.fixture
def config_bundle(config_factory: Callable[..., ConfigBundle]) -> ConfigBundle:
    return config_factory()


@pytest.fixture
def runtime_context(config_bundle: ConfigBundle) -> core_logic.RuntimeContext:
    """Workbook-backed runtime context loaded through the public API."""

    context = core_logic.load_runtime_context(config_bundle.config_path)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    return data_manager.ConfigSettings(
        data_file=tmp_path / "gestiart_data.xlsx",
        shop_name="GestiArt Test",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        backend=constants.StoreBackend.MEMORY,
    )


@pytest.fixture
def product_store() -> InMemoryProductStore:
    return InMemoryProductStore([PRODUCT_P, *DEMO_CATALOG])


@pytest.fixture
def sale_store() -> InMemorySaleStore:
    return InMemorySaleStore(invoice_prefix="FACT")


@pytest.fixture
def context(
    settings: data_manager.ConfigSettings,
    product_store: InMemoryProductStore,
    sale_store: InMemorySaleStore,
) -> core_logic.RuntimeContext:
    """In-memory runtime context with the worked-example product and the demo catalog."""

    return core_logic.RuntimeContext(settings=settings, product_store=product_store, sale_store=sale_store)


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    return cli.build_parser()
