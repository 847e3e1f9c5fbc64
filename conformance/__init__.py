"""Conformance suite - black-box checks of a ClickHouse client implementation"""

from .assertions import Checker, Failure, Outcome
from .registry import ScenarioEnv, get_scenario, list_scenarios, scenario
from .runner import ConformanceResult, ConformanceSuite, run_conformance, run_scenario

__all__ = [
    "Checker",
    "Failure",
    "Outcome",
    "ScenarioEnv",
    "scenario",
    "get_scenario",
    "list_scenarios",
    "ConformanceResult",
    "ConformanceSuite",
    "run_conformance",
    "run_scenario",
]
