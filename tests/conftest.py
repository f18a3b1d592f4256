from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from graph_dal.persistence.dialect import reset_dialect

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture(autouse=True)
def _fresh_dialect() -> Iterator[None]:
    """The bound dialect is process state; every test starts unbound."""
    reset_dialect()
    yield
    reset_dialect()
