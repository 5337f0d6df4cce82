from .config import AnalysisConfig
from .count_matrix import CountMatrix
from .data_loader import DataLoader, build_count_matrix, detect_sample_groups
from .preprocessing import DataPreprocessor
from .fitters import get_fitter
from .analysis import StrategyComparison
from .pipeline import AnalysisContext, ReportPipeline
