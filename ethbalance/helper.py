"""Runtime for the mackerel-agent plugin text protocol.

The agent invokes the plugin once per collection cycle. With the
``MACKEREL_AGENT_PLUGIN_META`` environment variable set the plugin prints
its graph definitions as JSON, otherwise one ``key\\tvalue\\tepoch`` line per
metric. Values of diff metrics are turned into per-minute rates using the
previous cycle's values kept in a tempfile.
"""
import os
import sys
import json
import time
import logging
import tempfile
from dataclasses import dataclass, field
from typing import Dict, List, Optional, TextIO

logger = logging.getLogger(__name__)

META_ENV = "MACKEREL_AGENT_PLUGIN_META"
META_HEADER = "# mackerel-agent-plugin"
LAST_TIME_KEY = "_lastTime"
# previous samples older than this are too stale to diff against
MAX_DIFF_INTERVAL = 600


@dataclass
class Metric:
    name: str
    label: str
    diff: bool = False
    stacked: bool = False
    scale: float = 0

    def to_meta(self) -> Dict:
        return {"name": self.name, "label": self.label, "stacked": self.stacked}


@dataclass
class Graph:
    label: str
    unit: str
    metrics: List[Metric] = field(default_factory=list)


def title(key: str) -> str:
    return key.replace(".", " ").replace("_", " ").title()


class MackerelPlugin:
    def __init__(self, plugin, tempfile_path: str = "", out: Optional[TextIO] = None):
        self.plugin = plugin
        self.tempfile = tempfile_path or self.default_tempfile()
        self.out = out or sys.stdout

    def prefix(self) -> str:
        getter = getattr(self.plugin, "metric_key_prefix", None)
        return getter() if getter else ""

    def default_tempfile(self) -> str:
        name = self.prefix() or type(self.plugin).__name__.lower()
        return os.path.join(tempfile.gettempdir(), f"mackerel-plugin-{name}")

    def graph_key(self, key: str) -> str:
        prefix = self.prefix()
        if not prefix:
            return key
        return f"{prefix}.{key}" if key else prefix

    def output_definitions(self):
        graphs = {}
        for key, graph in self.plugin.graph_definition().items():
            k = self.graph_key(key)
            graphs[k] = {
                "label": graph.label or title(k),
                "unit": graph.unit,
                "metrics": [m.to_meta() for m in graph.metrics],
            }
        print(META_HEADER, file=self.out)
        print(json.dumps({"graphs": graphs}), file=self.out)

    def load_last_values(self) -> Dict[str, float]:
        try:
            with open(self.tempfile, 'r') as f:
                return json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable tempfile {self.tempfile}: {e}")
            return {}

    def save_values(self, values: Dict[str, float], now: float):
        state = dict(values)
        state[LAST_TIME_KEY] = int(now)
        with open(self.tempfile, 'w') as f:
            json.dump(state, f)

    def calc_diff(self, key: str, value: float, last_values: Dict[str, float], now: float) -> Optional[float]:
        last_time = last_values.get(LAST_TIME_KEY)
        if last_time is None or key not in last_values:
            return None
        elapsed = int(now) - int(last_time)
        if elapsed <= 0 or elapsed > MAX_DIFF_INTERVAL:
            logger.info(f"Skipping diff for {key}: previous sample is {elapsed}s old")
            return None
        delta = value - last_values[key]
        if delta < 0:
            logger.info(f"Counter for {key} seems to have been reset")
            return None
        return delta * 60 / elapsed

    def output_values(self, now: Optional[float] = None):
        now = time.time() if now is None else now
        values = self.plugin.fetch_metrics()
        graphs = self.plugin.graph_definition()

        has_diff = any(m.diff for g in graphs.values() for m in g.metrics)
        last_values = self.load_last_values() if has_diff else {}

        for key, graph in graphs.items():
            for metric in graph.metrics:
                if metric.name not in values:
                    continue
                value = values[metric.name]
                if metric.diff:
                    value = self.calc_diff(metric.name, value, last_values, now)
                    if value is None:
                        continue
                if metric.scale:
                    value *= metric.scale
                print(f"{self.graph_key(key)}.{metric.name}\t{value:f}\t{int(now)}", file=self.out)

        if has_diff:
            self.save_values(values, now)

    def run(self):
        if os.environ.get(META_ENV):
            self.output_definitions()
        else:
            self.output_values()
