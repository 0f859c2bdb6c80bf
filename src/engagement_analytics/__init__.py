"""Cross-platform engagement analytics: helpdesk, CRM and product usage fused per user."""
from .fusion import fuse
from .models import AnalysisResult, SourceSnapshot, UnifiedUserProfile
from .orchestrator import EngagementAnalyzer, SourceFetcher, run_analysis
from .scoring import classify_churn_risk, score

__all__ = [
    "AnalysisResult",
    "EngagementAnalyzer",
    "SourceFetcher",
    "SourceSnapshot",
    "UnifiedUserProfile",
    "classify_churn_risk",
    "fuse",
    "run_analysis",
    "score",
]
