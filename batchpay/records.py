import csv
import logging
import os
from typing import Iterable, Iterator, List, Mapping, Sequence

from batchpay.errors import MalformedRecord, SchemaMismatch
from batchpay.models import TransferRecord, Wallet

log = logging.getLogger("batchpay.records")

WALLET_COLUMNS = ("address", "privateKey")
TRANSFER_COLUMNS = ("toAddress", "amount")


def read_records(path, required: Sequence[str] = ()) -> Iterator[dict]:
    """Yield rows of `path` as {column: string} in file order.

    Lazy: the file is opened on first iteration and every call starts over.
    A row missing any `required` column raises MalformedRecord at that row.
    """
    with open(path, "r", newline="", encoding="utf-8-sig") as f_in:
        reader = csv.DictReader(f_in)
        fieldnames = reader.fieldnames or []
        for col in required:
            if col not in fieldnames:
                raise MalformedRecord(path, 1, col)
        for row in reader:
            for col in required:
                if row.get(col) is None:
                    raise MalformedRecord(path, reader.line_num, col)
            # short rows come back as None; extra cells land under the None key
            row.pop(None, None)
            yield {k: v for k, v in row.items() if v is not None}


def write_records(path, rows: Iterable[Mapping[str, str]]) -> int:
    rows = [dict(r) for r in rows]
    fieldnames = list(rows[0].keys()) if rows else []
    expected = set(fieldnames)
    for i, row in enumerate(rows):
        if set(row.keys()) != expected:
            raise SchemaMismatch(i, fieldnames, row.keys())

    with open(path, "w", newline="", encoding="utf-8") as f_out:
        if fieldnames:
            w = csv.DictWriter(f_out, fieldnames=fieldnames)
            w.writeheader()
            w.writerows(rows)
    log.debug("Wrote %d rows to %s", len(rows), os.fspath(path))
    return len(rows)


def load_wallets(path) -> List[Wallet]:
    return [
        Wallet.from_record(row["address"], row["privateKey"])
        for row in read_records(path, WALLET_COLUMNS)
    ]


def save_wallets(path, wallets: Iterable[Wallet]) -> int:
    return write_records(path, (
        {"address": w.address, "privateKey": w.private_key} for w in wallets
    ))


def load_transfers(path) -> List[TransferRecord]:
    records = []
    for row in read_records(path, TRANSFER_COLUMNS):
        records.append(TransferRecord(
            to_address=row["toAddress"].strip(),
            amount=row["amount"].strip(),
            from_address=(row.get("fromAddress") or "").strip() or None,
        ))
    return records
