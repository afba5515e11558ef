from .analysis_cache import AnalysisCacheEntry
from .analysis_job import AnalysisJob
from .data_alert import DataAlert
