"""Polish pipeline package.

Provides the job state machine, the pipeline runner and the pluggable
PolishEngine implementations (heuristic, Anthropic-backed, scenario fake).
"""

from codepolish.polish.engine import AnalysisResult, PolishEngine, TransformResult, build_engine
from codepolish.polish.pipeline import PolishPipeline
from codepolish.polish.state_machine import PolishStateMachine

__all__ = [
    "AnalysisResult",
    "PolishEngine",
    "PolishPipeline",
    "PolishStateMachine",
    "TransformResult",
    "build_engine",
]
