"""
Medical Analysis Tool Registry

Static mapping from tool name to an AnalysisTool descriptor. The registry is
built once and never mutated; adding a tool means adding an entry to
MEDICAL_ANALYSIS_TOOLS.

Tool templates read their input from a `patient_data` variable which the
dispatcher binds before the template runs.
"""

import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from ..models.execution import ExecutionResult
from ..models.tool import AnalysisTool, ToolParameters
from .exceptions import ToolNotFoundError

if TYPE_CHECKING:
    from .executor import CodeExecutorService

logger = logging.getLogger(__name__)

ANALYSIS_PACKAGES = ("pandas", "numpy", "matplotlib", "seaborn")


VOE_RISK_TEMPLATE = '''
# VOE Risk Analysis
def analyze_voe_risk(patient_data):
    """Analyze vaso-occlusive episode risk factors"""

    if isinstance(patient_data, dict):
        df = pd.DataFrame([patient_data])
    else:
        df = pd.DataFrame(patient_data)

    risk_factors = []
    risk_score = 0

    if 'age' in df.columns:
        age = df['age'].iloc[0] if len(df) > 0 else 0
        if age < 5:
            risk_factors.append({'factor': 'young_age', 'weight': 0.3, 'value': age})
            risk_score += 30
        elif age > 50:
            risk_factors.append({'factor': 'advanced_age', 'weight': 0.2, 'value': age})
            risk_score += 20

    if 'hbf_level' in df.columns:
        hbf = df['hbf_level'].iloc[0] if len(df) > 0 else 0
        if hbf < 5:
            risk_factors.append({'factor': 'low_hbf', 'weight': 0.4, 'value': hbf})
            risk_score += 40
        elif hbf > 15:
            risk_factors.append({'factor': 'high_hbf_protective', 'weight': -0.3, 'value': hbf})
            risk_score -= 30

    if 'hemoglobin' in df.columns:
        hb = df['hemoglobin'].iloc[0] if len(df) > 0 else 0
        if hb < 7:
            risk_factors.append({'factor': 'severe_anemia', 'weight': 0.3, 'value': hb})
            risk_score += 30

    risk_score = max(0, min(100, risk_score))

    recommendations = []
    if risk_score > 70:
        recommendations.append("Consider prophylactic hydroxyurea therapy")
        recommendations.append("Increase monitoring frequency")
    elif risk_score > 40:
        recommendations.append("Regular follow-up recommended")
        recommendations.append("Monitor for early signs of VOE")
    else:
        recommendations.append("Continue current management")

    return {
        'risk_score': risk_score,
        'risk_factors': risk_factors,
        'recommendations': recommendations,
        'confidence': 0.8,
        'analysis_date': datetime.now().isoformat()
    }

result = analyze_voe_risk(patient_data)
print(json.dumps(result, indent=2, default=str))
'''


LAB_TREND_TEMPLATE = '''
# Lab Trend Analysis
def analyze_lab_trends(lab_data):
    """Analyze trends in laboratory values"""

    df = pd.DataFrame(lab_data)

    if 'test_date' in df.columns:
        df['test_date'] = pd.to_datetime(df['test_date'])
        df = df.sort_values('test_date')

    fig, axes = plt.subplots(2, 2, figsize=(15, 10))
    fig.suptitle('Laboratory Value Trends', fontsize=16)

    if 'hemoglobin' in df.columns:
        axes[0, 0].plot(df['test_date'], df['hemoglobin'], marker='o')
        axes[0, 0].set_title('Hemoglobin Trend')
        axes[0, 0].set_ylabel('Hemoglobin (g/dL)')
        axes[0, 0].axhline(y=7, color='r', linestyle='--', alpha=0.7, label='Critical Low')
        axes[0, 0].legend()

    if 'hbf_level' in df.columns:
        axes[0, 1].plot(df['test_date'], df['hbf_level'], marker='o', color='green')
        axes[0, 1].set_title('HbF Level Trend')
        axes[0, 1].set_ylabel('HbF (%)')

    if 'reticulocyte_count' in df.columns:
        axes[1, 0].plot(df['test_date'], df['reticulocyte_count'], marker='o', color='orange')
        axes[1, 0].set_title('Reticulocyte Count Trend')
        axes[1, 0].set_ylabel('Reticulocytes (%)')

    if 'lactate_dehydrogenase' in df.columns:
        axes[1, 1].plot(df['test_date'], df['lactate_dehydrogenase'], marker='o', color='red')
        axes[1, 1].set_title('LDH Trend')
        axes[1, 1].set_ylabel('LDH (U/L)')
        axes[1, 1].axhline(y=280, color='r', linestyle='--', alpha=0.7, label='Upper Normal')
        axes[1, 1].legend()

    plt.tight_layout()
    plt.savefig('lab_trends.png', dpi=300, bbox_inches='tight')

    trends = {}
    for col in ['hemoglobin', 'hbf_level', 'reticulocyte_count', 'lactate_dehydrogenase']:
        if col in df.columns and len(df) > 1:
            x = range(len(df))
            y = df[col].values
            slope = float(np.polyfit(x, y, 1)[0])
            trends[col] = {
                'slope': slope,
                'direction': 'increasing' if slope > 0 else 'decreasing' if slope < 0 else 'stable',
                'latest_value': float(y[-1]),
                'change_from_first': float(y[-1] - y[0])
            }

    return trends

trends = analyze_lab_trends(patient_data)
print(json.dumps(trends, indent=2, default=str))
'''


MEDICAL_ANALYSIS_TOOLS: Mapping[str, AnalysisTool] = MappingProxyType({
    "voe_risk_analysis": AnalysisTool(
        tool_name="VOE Risk Analysis",
        description="Analyze vaso-occlusive episode risk factors for SCD patients",
        parameters=ToolParameters(analysis_type="voe_risk_assessment", output_format="json"),
        code_template=VOE_RISK_TEMPLATE,
        required_packages=ANALYSIS_PACKAGES,
        expected_outputs=("risk_score", "risk_factors", "recommendations"),
    ),
    "lab_trend_analysis": AnalysisTool(
        tool_name="Lab Trend Analysis",
        description="Analyze laboratory value trends over time",
        parameters=ToolParameters(analysis_type="lab_trend", output_format="plot"),
        code_template=LAB_TREND_TEMPLATE,
        required_packages=ANALYSIS_PACKAGES,
        expected_outputs=("lab_trends.png", "trend_statistics"),
    ),
})


class ToolRegistry:
    """
    Read-only lookup over analysis tools.

    Constructed explicitly and handed to whoever needs it, so tests can
    build a registry with their own tools.

    Example:
        >>> registry = ToolRegistry()
        >>> registry.lookup("voe_risk_analysis").tool_name
        'VOE Risk Analysis'
    """

    def __init__(self, tools: Optional[Mapping[str, AnalysisTool]] = None):
        source = MEDICAL_ANALYSIS_TOOLS if tools is None else tools
        self._tools: Mapping[str, AnalysisTool] = MappingProxyType(dict(source))

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def lookup(self, name: str) -> AnalysisTool:
        """
        Get a tool by registry key.

        Raises:
            ToolNotFoundError: If name is not registered
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name, available=self.list_names())
        return tool

    def list_names(self) -> List[str]:
        return sorted(self._tools.keys())

    def describe(self) -> List[Dict[str, Any]]:
        """Tool listing for discovery endpoints (templates omitted)"""
        return [
            {
                "name": name,
                "tool_name": tool.tool_name,
                "description": tool.description,
                "analysis_type": tool.parameters.analysis_type,
                "output_format": tool.parameters.output_format,
                "required_packages": list(tool.required_packages),
                "expected_outputs": list(tool.expected_outputs),
            }
            for name, tool in sorted(self._tools.items())
        ]


async def run_voe_risk_analysis(
    executor: "CodeExecutorService",
    patient_data: Optional[Dict[str, Any]] = None,
    session_id: Optional[str] = None
) -> ExecutionResult:
    """
    Run the VOE risk analysis tool for one patient.

    Args:
        executor: Dispatcher to run the tool through
        patient_data: Patient fields read by the template (age, hbf_level, hemoglobin, ...)
        session_id: Optional existing session

    Raises:
        ToolNotFoundError: If the executor's registry has no voe_risk_analysis entry
    """
    tool = executor.tools.lookup("voe_risk_analysis")
    return await executor.execute_medical_analysis(tool, patient_data or {}, session_id=session_id)
