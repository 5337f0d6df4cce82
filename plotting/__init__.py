from .volcano import create_volcano_plot, create_md_plot, create_multi_volcano
from .heatmap import create_heatmap
from .scatter import create_fc_scatter
from .barplot import create_gene_set_barplot, create_gene_set_members_barplot
from .qc import create_logcpm_boxplot, create_mds_plot, mds_coordinates
from .diagnostics import (
    create_bcv_plot, create_voom_trend_plot, create_ql_dispersion_plot, create_sample_weights_plot
)
