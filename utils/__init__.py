from .gene_mapping import GeneAnnotator
from .pathways import GeneSetDatabase
from .export import ReportExporter
