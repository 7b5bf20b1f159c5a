import json
from pathlib import Path
from typing import Dict, Any


class JSONResultWriter:
    """JSON 结果导出"""

    def __init__(self, output_dir: Path):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def write(self, name: str, report: Dict[str, Any]) -> Path:
        """将报告写入 <output_dir>/<name>.json"""
        report_file = self.output_dir / f"{name}.json"
        with open(report_file, "w", encoding="utf-8") as f:
            json.dump(report, f, indent=2, ensure_ascii=False, default=str)
        return report_file
