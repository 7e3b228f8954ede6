"""Shared pytest fixtures and utilities for Wings Inventory tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from wings_inventory import cli, constants, core_logic, data_manager  # noqa: E402
from wings_inventory.constants import StorageKey  # noqa: E402
from wings_inventory.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "ShopName = {shop_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Display]\n"
    "CurrencySymbol = {currency_symbol}\n"
)

APPLE_ID = 1
BANANA_ID = 2
ORANGE_ID = 3


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    shop_name: str


class FakeStorage:
    """In-memory stand-in for :class:`data_manager.WorkbookStorage`.

    Every ``write`` is recorded as ``(key, records)`` so tests can assert the
    order and content of persistence calls. Keys listed in ``failing_keys``
    raise ``OSError`` on write.
    """

    def __init__(self, initial: Optional[Dict[StorageKey, Sequence[object]]] = None) -> None:
        self.data: Dict[StorageKey, List[object]] = {key: [] for key in StorageKey}
        for key, records in (initial or {}).items():
            self.data[StorageKey(key)] = list(records)
        self.writes: List[Tuple[StorageKey, List[object]]] = []
        self.failing_keys: set[StorageKey] = set()

    def read(self, key: StorageKey) -> List[object]:
        return list(self.data[StorageKey(key)])

    def write(self, key: StorageKey, records: Sequence[object]) -> None:
        key = StorageKey(key)
        if key in self.failing_keys:
            raise OSError(f"storage rejected write to {key.value}")
        self.data[key] = list(records)
        self.writes.append((key, list(records)))

    def written_keys(self) -> List[StorageKey]:
        return [key for key, _ in self.writes]


def make_product(product_id: int, name: str, quantity: int, price: str) -> data_manager.Product:
    return data_manager.Product(
        product_id=product_id, name=name, quantity=quantity, price=Decimal(price)
    )


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "wings_master.xlsx",
        seed: bool = True,
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        kwargs = {} if seed else {"seed_products": ()}
        create_master_workbook(workbook_path, overwrite=True, **kwargs)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh seeded master workbook."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        shop_name: str = "Test Shop",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        currency_symbol: str = "R",
        seed: bool = True,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}", seed=seed)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                shop_name=shop_name,
                schema_version=schema_version,
                currency_symbol=currency_symbol,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            shop_name=shop_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def session(config_file: Path) -> core_logic.SessionState:
    """Load a workbook-backed session through the public API."""

    state = core_logic.load_session(config_file)
    core_logic.ensure_schema_version(state)
    return state


@pytest.fixture
def storage() -> FakeStorage:
    """Fake storage preloaded with Apple, Banana and Orange."""

    return FakeStorage(
        {
            StorageKey.PRODUCTS: [
                make_product(APPLE_ID, "Apple", 50, "4"),
                make_product(BANANA_ID, "Banana", 30, "4"),
                make_product(ORANGE_ID, "Orange", 20, "4"),
            ]
        }
    )


@pytest.fixture
def state(storage: FakeStorage) -> core_logic.SessionState:
    """Session over the in-memory fake storage."""

    return core_logic.open_session(storage)


@pytest.fixture
def empty_state() -> core_logic.SessionState:
    """Session with no products, sales or edits."""

    return core_logic.open_session(FakeStorage())


@pytest.fixture
def fixed_moment() -> datetime:
    return datetime(2025, 10, 30, 12, 0, 0, tzinfo=UTC)


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


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="wings-cli", description="Wings CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
