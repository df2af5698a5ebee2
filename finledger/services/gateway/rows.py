"""
Remote Row Layouts

Column layouts of the remote worksheets and the write semantics the remote
store applies to them. Gateways that keep rows themselves (direct
spreadsheet access, in-memory) share these so that every backend behaves
like the Apps Script web app.

All cells are strings; numbers are parsed back by the normalizer.
"""

from abc import abstractmethod
from decimal import Decimal
from typing import Any, Optional

from finledger.models.ledger import AMOUNT_TOLERANCE, add_one_month, parse_amount, parse_day
from finledger.models.sync import RemoteAction, RemoteOperation
from finledger.services.gateway.interface import (
    CARDS,
    EXPENSES,
    GOALS,
    INCOMES,
    PAYMENTS,
    PENDING,
    RemoteLedgerGateway,
    RemoteRejectedError,
)


COLUMNS = {
    CARDS: [
        "banco", "tipo_tarjeta", "alias", "url_imagen", "dia_cierre",
        "dia_pago", "limite", "timestamp", "tipo_cuenta", "tea",
    ],
    PENDING: [
        "id", "fecha_gasto", "tarjeta", "categoria", "descripcion", "monto",
        "fecha_cierre", "fecha_pago", "estado", "num_cuotas", "cuotas_pagadas",
        "monto_pagado_total", "tipo_gasto", "notas", "timestamp",
    ],
    EXPENSES: [
        "fecha", "categoria", "descripcion", "monto", "notas", "timestamp",
        "cuenta", "meta_id",
    ],
    INCOMES: [
        "fecha", "categoria", "descripcion", "monto", "notas", "timestamp",
        "cuenta", "meta_id",
    ],
    PAYMENTS: [
        "fecha_pago", "id_gasto", "tarjeta", "descripcion_gasto", "monto_pagado",
        "tipo_pago", "num_cuota", "notas", "timestamp",
    ],
    GOALS: [
        "id", "nombre", "monto_objetivo", "monto_ahorrado", "estado",
        "fecha_limite", "timestamp",
    ],
}

PROFILE_COLUMNS = ["avatar_id", "nombre"]

# Column that identifies a row for update/delete
KEY_COLUMN = {
    CARDS: "alias",
    PENDING: "id",
    EXPENSES: "timestamp",
    INCOMES: "timestamp",
    GOALS: "id",
}

# Columns an update never touches (the identity stays put)
_UPDATE_KEEPS = {
    EXPENSES: {"timestamp"},
    INCOMES: {"timestamp"},
    CARDS: {"timestamp"},
    PENDING: {"id", "timestamp"},
    GOALS: {"id", "timestamp"},
}


def columns_for(collection: Optional[str]) -> list[str]:
    try:
        return COLUMNS[collection]
    except KeyError:
        raise RemoteRejectedError(f"Hoja no encontrada - {collection}")


def row_from_payload(collection: str, payload: dict[str, str]) -> list[str]:
    return [str(payload.get(column, "")) for column in columns_for(collection)]


def record_from_row(collection: str, row: list[str]) -> dict[str, str]:
    """A row as the snapshot presents it (missing trailing cells are empty)."""
    columns = columns_for(collection)
    padded = list(row) + [""] * (len(columns) - len(row))
    return dict(zip(columns, padded))


def lookup_key(collection: str, payload: dict[str, str], for_update: bool) -> str:
    """
    Identity a write refers to.

    Deletes always send the identity as "id". Updates send it in the field
    the store expects: originalAlias for cards, timestamp_original for
    history rows, id otherwise.
    """
    if collection not in KEY_COLUMN:
        raise RemoteRejectedError(f"Hoja no encontrada - {collection}")
    if not for_update:
        return payload.get("id", "")
    if collection == CARDS:
        return payload.get("originalAlias") or payload.get("alias", "")
    if collection in (EXPENSES, INCOMES):
        return payload.get("timestamp_original", "")
    return payload.get("id", "")


def find_row(collection: str, rows: list[list[str]], key: str) -> Optional[int]:
    """Index into rows (header excluded) of the row with this identity."""
    index = columns_for(collection).index(KEY_COLUMN[collection])
    for position, row in enumerate(rows):
        if len(row) > index and row[index] == key:
            return position
    return None


def updated_row(collection: str, current: list[str], payload: dict[str, str]) -> list[str]:
    """Apply an update payload to a row; identity columns keep their value."""
    record = record_from_row(collection, current)
    keep = _UPDATE_KEEPS.get(collection, set())
    for column in columns_for(collection):
        if column in keep or column not in payload:
            continue
        record[column] = str(payload[column])
    return [record[column] for column in columns_for(collection)]


def apply_payment(pending_row: list[str], payment: dict[str, str]) -> list[str]:
    """
    Update a pending row after a payment row is inserted.

    Debts accumulate the paid amount (capped at the total) and derive the
    paid installments from it. Subscriptions roll both dates one month.
    """
    record = record_from_row(PENDING, pending_row)

    if record["tipo_gasto"] == "suscripcion":
        due = parse_day(record["fecha_pago"])
        closing = parse_day(record["fecha_cierre"])
        if due is not None:
            record["fecha_pago"] = add_one_month(due).isoformat()
        if closing is not None:
            record["fecha_cierre"] = add_one_month(closing).isoformat()
        record["estado"] = "Pendiente"
    else:
        total = parse_amount(record["monto"]) or Decimal("0")
        count = max(1, int(parse_amount(record["num_cuotas"]) or 1))
        previous = parse_amount(record["monto_pagado_total"]) or Decimal("0")
        paid = min(total, previous + (parse_amount(payment.get("monto_pagado")) or Decimal("0")))
        installments = min(count, int((paid + AMOUNT_TOLERANCE) / (total / count))) if total else 0

        record["monto_pagado_total"] = format(paid, "f")
        record["cuotas_pagadas"] = str(installments)
        if total - paid <= AMOUNT_TOLERANCE:
            record["estado"] = "Pagado"

    return [record[column] for column in COLUMNS[PENDING]]


def history_records(rows: list[list[str]], collection: str) -> list[dict[str, str]]:
    """History rows tagged with the sheet they came from."""
    records = []
    for row in rows:
        if not any(row):
            continue
        record = record_from_row(collection, row)
        record["tipo"] = collection
        records.append(record)
    return records


def pending_record(row: list[str]) -> dict[str, str]:
    record = record_from_row(PENDING, row)
    record["tipo"] = record["tipo_gasto"] or "deuda"
    return record


class RowBackedGateway(RemoteLedgerGateway):
    """
    A gateway that owns the worksheets itself.

    Subclasses provide row storage; this class applies the remote store's
    write semantics and assembles snapshots, so every row-backed backend
    answers exactly like the web app does.
    """

    @abstractmethod
    def _read_rows(self, collection: str) -> list[list[str]]:
        """Data rows of a worksheet, header excluded."""

    @abstractmethod
    def _append_row(self, collection: str, row: list[str]) -> None:
        pass

    @abstractmethod
    def _replace_row(self, collection: str, position: int, row: list[str]) -> None:
        pass

    @abstractmethod
    def _delete_row(self, collection: str, position: int) -> None:
        pass

    @abstractmethod
    def _read_profile(self) -> Optional[dict[str, str]]:
        pass

    @abstractmethod
    def _write_profile(self, profile: dict[str, str]) -> None:
        pass

    def _extras(self) -> dict[str, Any]:
        """Opaque snapshot entries (notification config and the like)."""
        return {}

    def _build_snapshot(self) -> dict[str, Any]:
        snapshot = {
            "cards": [
                record_from_row(CARDS, row) for row in self._read_rows(CARDS) if any(row)
            ],
            "pending": [pending_record(row) for row in self._read_rows(PENDING) if any(row)],
            "history": (
                history_records(self._read_rows(EXPENSES), EXPENSES)
                + history_records(self._read_rows(INCOMES), INCOMES)
            ),
            "goals": [
                record_from_row(GOALS, row) for row in self._read_rows(GOALS) if any(row)
            ],
            "profile": self._read_profile(),
        }
        snapshot.update(self._extras())
        return snapshot

    def _apply(self, operation: RemoteOperation) -> dict[str, Any]:
        payload = operation.payload

        if operation.action == RemoteAction.SAVE_PROFILE:
            self._write_profile({column: payload.get(column, "") for column in PROFILE_COLUMNS})
            return {"success": True}

        collection = operation.collection
        if operation.action == RemoteAction.INSERT:
            self._append_row(collection, row_from_payload(collection, payload))
            if collection == PAYMENTS:
                self._settle_pending(payload)
            return {"success": True}

        for_update = operation.action == RemoteAction.UPDATE
        key = lookup_key(collection, payload, for_update)
        rows = self._read_rows(collection)
        position = find_row(collection, rows, key)
        if position is None:
            raise RemoteRejectedError("Registro no encontrado")

        if for_update:
            self._replace_row(collection, position, updated_row(collection, rows[position], payload))
        else:
            self._delete_row(collection, position)
        return {"success": True}

    def _settle_pending(self, payment: dict[str, str]) -> None:
        rows = self._read_rows(PENDING)
        position = find_row(PENDING, rows, payment.get("id_gasto", ""))
        # The store records the payment even when the obligation is gone
        if position is not None:
            self._replace_row(PENDING, position, apply_payment(rows[position], payment))
