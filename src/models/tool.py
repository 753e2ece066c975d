"""
Analysis Tool Model
Registry entry describing one canned sandbox analysis
"""

from typing import Any, Dict, Literal, Optional, Tuple

from pydantic import BaseModel


class ToolParameters(BaseModel):
    analysis_type: str
    output_format: Literal["json", "plot", "table", "report"] = "json"
    patient_data: Optional[Dict[str, Any]] = None

    class Config:
        frozen = True


class AnalysisTool(BaseModel):
    """
    Immutable analysis tool descriptor.

    code_template reads its input from a bound `patient_data` variable and may
    use pd/np/plt/json/datetime without importing them (the dispatcher
    prepends those imports).
    """
    tool_name: str
    description: str
    parameters: ToolParameters
    code_template: str
    required_packages: Tuple[str, ...] = ()
    expected_outputs: Tuple[str, ...] = ()

    class Config:
        frozen = True
