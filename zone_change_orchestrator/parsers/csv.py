import csv
import logging
from typing import Dict, List

from ..utils.validators import (
    validate_fqdn,
    validate_record_type,
    validate_record_value,
    validate_ttl,
)

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("name", "type", "ttl", "rdata")

# Separator between the values of one recordset in the rdata column
RDATA_SEPARATOR = "|"


class CSVParser:
    def __init__(self, csv_path: str):
        self.csv_path = csv_path

    def parse(self) -> List[Dict]:
        """Parse CSV file and validate records."""
        records = []

        try:
            with open(self.csv_path, "r", newline="") as f:
                reader = csv.DictReader(f)

                fieldnames = [name.strip().lower() for name in reader.fieldnames or []]
                missing = [column for column in REQUIRED_COLUMNS if column not in fieldnames]
                if missing:
                    raise ValueError(
                        f"CSV must contain {', '.join(REQUIRED_COLUMNS)} columns "
                        f"(missing: {', '.join(missing)})"
                    )
                reader.fieldnames = fieldnames

                for row_num, row in enumerate(reader, start=2):
                    record = self._parse_row(row, row_num)
                    if record is not None:
                        records.append(record)

            logger.info(f"Successfully parsed {len(records)} records from CSV")

        except FileNotFoundError:
            raise FileNotFoundError(f"CSV file not found: {self.csv_path}")
        except csv.Error as e:
            raise ValueError(f"Error parsing CSV: {e}") from e

        return records

    def _parse_row(self, row: Dict[str, str], row_num: int):
        name = (row.get("name") or "").strip()
        record_type = (row.get("type") or "").strip().upper()
        ttl_text = (row.get("ttl") or "").strip()
        rdata = [
            value.strip()
            for value in (row.get("rdata") or "").split(RDATA_SEPARATOR)
            if value.strip()
        ]

        # Validate name, type, TTL and values
        if not validate_fqdn(name):
            logger.warning(f"Invalid record name '{name}' at row {row_num}, skipping")
            return None

        if not validate_record_type(record_type):
            logger.warning(f"Unsupported record type '{record_type}' at row {row_num}, skipping")
            return None

        try:
            ttl = int(ttl_text) if ttl_text else 300
        except ValueError:
            ttl = None
        if ttl is None or not validate_ttl(ttl):
            logger.warning(f"Invalid TTL '{ttl_text}' at row {row_num}, skipping")
            return None

        if not rdata:
            logger.warning(f"No record data for '{name}' at row {row_num}, skipping")
            return None

        for value in rdata:
            if not validate_record_value(record_type, value):
                logger.warning(
                    f"Invalid {record_type} value '{value}' at row {row_num}, skipping"
                )
                return None

        return {"name": name, "type": record_type, "ttl": ttl, "rdata": rdata}
