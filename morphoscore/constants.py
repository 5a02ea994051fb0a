"""
Constantes globales du moteur de scoring morphométrique.

Ce fichier est la SOURCE UNIQUE DE VÉRITÉ pour les valeurs par défaut
(vecteurs de coloration, seuils, plafonds de confiance, bandes de labels).

Principe: une constante définie ICI est utilisée PARTOUT, jamais redéfinie.
Les presets d'organes (morphoscore.config.presets) ne font que surcharger
ces valeurs via la configuration.
"""

ENGINE_VERSION = "1.0.0"

# =============================================================================
# DÉCONVOLUTION (Ruifrok & Johnston, 2001)
# =============================================================================

# Évite log10(0) sur les pixels noirs
OD_EPSILON = 1e-6

# Vecteurs OD de référence (R, G, B)
HEMATOXYLIN_VECTOR = (0.650, 0.704, 0.286)
EOSIN_VECTOR = (0.072, 0.990, 0.105)
RESIDUAL_VECTOR = (0.268, 0.570, 0.776)  # DAB / résiduel

DEFAULT_STAIN_VECTORS = (HEMATOXYLIN_VECTOR, EOSIN_VECTOR, RESIDUAL_VECTOR)
DEFAULT_CHANNEL_NAMES = ("primary", "secondary", "residual")

# Canal utilisé pour la détection des structures (noyaux)
PRIMARY_CHANNEL = "primary"
SECONDARY_CHANNEL = "secondary"
RESIDUAL_CHANNEL = "residual"

# =============================================================================
# POST-TRAITEMENT DES CANAUX
# =============================================================================

DEFAULT_SMOOTHING = "median"       # "median" | "mean"
DEFAULT_KERNEL_SIZE = 3            # 3 ou 5
DEFAULT_LOW_PERCENTILE = 1.0
DEFAULT_HIGH_PERCENTILE = 99.0
MIN_DYNAMIC_RANGE = 1e-3           # En dessous: pas d'étirement (image uniforme)

# =============================================================================
# SEUILS DES FEATURES (unités canal étiré [0, 1])
# =============================================================================

STRUCTURE_CUTOFF = 0.47            # 120/255 - détection des noyaux
MIN_STRUCTURE_AREA = 20            # Pixels minimum pour un noyau valide
MAX_STRUCTURE_AREA = 500           # Au-delà: débris / amas
MIN_STRUCTURES = 20                # Population minimale pour la morphométrie

DENSITY_CUTOFF = 0.588             # 150/255 - pixels "denses" en hématoxyline
MITOTIC_CUTOFF = 0.627             # 160/255 - candidats mitotiques
LOCAL_MAXIMA_CUTOFF = 0.5
LOCAL_MAXIMA_NEIGHBORHOOD = 3      # 3 ou 5

WINDOW_SIZE = 50                   # Fenêtres de densité cellulaire
WINDOW_MIN_DENSITY = 0.3
MIN_WINDOWS = 15

SECONDARY_LOW_CUTOFF = 0.314       # 80/255 - espaces clairs
SECONDARY_BAND = (0.47, 0.784)     # 120-200/255 - différenciation
SECONDARY_HIGH_CUTOFF = 0.706      # 180/255
CYTOPLASM_CUTOFF = 0.392           # 100/255
CYTOPLASM_RADIUS = 15              # Rayon de recherche autour du centroïde

EDGE_CUTOFF = 0.118                # 30/255 - gradient de bord
STRONG_EDGE_CUTOFF = 0.157         # 40/255

# Valeur sentinelle des features sans population suffisante
INSUFFICIENT_DATA_SENTINEL = 0.0

# =============================================================================
# SCORING & ENSEMBLE
# =============================================================================

WEIGHT_TOLERANCE = 1e-6
CONFIDENCE_BOOST = 0.1
CONFIDENCE_CAP = 0.95
DEFAULT_CRITERION_CONFIDENCE = 0.7
INSUFFICIENT_DATA_CONFIDENCE = 0.2

MORPHOMETRIC_TIER = "morphometric"
PATTERN_TIER = "pattern"
TIER_NAMES = (MORPHOMETRIC_TIER, PATTERN_TIER)

# Convention unique de bornes: score > seuil → label
DEFAULT_LABEL_BANDS = (
    ("high", 0.85),
    ("intermediate", 0.65),
    ("low", 0.45),
)
DEFAULT_LABEL = "minimal"
