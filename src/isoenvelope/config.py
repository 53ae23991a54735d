"""
Tuning constants shared by the marginals, generators and tabulators.

All of them can be overridden per call through keyword arguments; the values
here only provide the defaults.
"""

# ==== table sizing ====
INIT_TABLE_SIZE   = 1024      # initial capacity of the layered tabulator buffers
DEFAULT_TAB_SIZE  = 1000      # initial node capacity of the ordered-generator arena

# ==== layered search ====
FIRST_LAYER_OFFSET   = -0.00001   # log-prob drop of the very first layer
LAYER_LPROB_STEP     = -2.0       # log-prob drop per layer in IsoLayeredGenerator.advance()
TABULATOR_LAYER_STEP = -3.0       # log-prob drop per layer in LayeredTabulator
DEFAULT_T_PROB_HINT  = 0.99       # coverage hint used to order marginals

# ==== envelopes ====
NORMALIZATION_TOLERANCE = 1e-3    # relative total-prob mismatch allowed by Wasserstein
