import csv
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence, TextIO

from .models import DuplicateGroup

GIB = 1024 ** 3


def format_size(size: int) -> str:
    for unit, scale in (("GB", GIB), ("MB", 1024 ** 2), ("KB", 1024)):
        if size >= scale:
            return f"{size / scale:.2f} {unit}"
    return f"{size} B"


class ReportGenerator:
    def __init__(self, groups: Sequence[DuplicateGroup]):
        self.groups = list(groups)

    @property
    def reclaimable_bytes(self) -> int:
        return sum(g.reclaimable_bytes for g in self.groups)

    def print_console(self, out: Optional[TextIO] = None):
        """
        One block per group, keeper first (marked with '*'), then the total
        that deleting every non-keeper would free.
        """
        out = out or sys.stdout
        for idx, group in enumerate(self.groups, start=1):
            out.write(f"[{idx}] {group.kind} ({len(group.members)} files)\n")
            for i, member in enumerate(group.members):
                marker = "*" if i == 0 else " "
                out.write(f" {marker} {format_size(member.size):>10}  {member.path}\n")
            out.write("\n")
        out.write(f"Total reclaimable size (GB): {self.reclaimable_bytes / GIB:.3f}\n")

    def write_csv(self, output_csv: Path) -> int:
        """Writes one row per group member. Returns the number of rows."""
        rows = 0
        with open(output_csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(["group", "kind", "keeper", "path", "size_bytes", "mtime"])
            for idx, group in enumerate(self.groups, start=1):
                for i, member in enumerate(group.members):
                    writer.writerow([
                        idx,
                        group.kind,
                        int(i == 0),
                        str(member.path),
                        member.size,
                        datetime.fromtimestamp(member.mtime).isoformat(),
                    ])
                    rows += 1
        logging.info(f"Wrote {rows} rows for {len(self.groups)} groups to {output_csv}")
        return rows
