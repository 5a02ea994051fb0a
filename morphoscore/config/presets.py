"""
Presets de configuration par organe.

Ce fichier est la SOURCE UNIQUE DE VÉRITÉ pour les pondérations des
catégories, des tiers et les bandes de labels de chaque organe.

Usage:
    from morphoscore.config.presets import get_preset, list_presets

Logique:
    - Un preset est un dictionnaire pur, chargé via PipelineConfig.from_dict
      (même validation qu'un fichier JSON)
    - "generic" est le preset par défaut
    - Les catégories "pattern" sont des catégories pondérées ordinaires
"""

import copy
from typing import Any, Dict, List, Optional

from morphoscore.config.pipeline_config import PipelineConfig
from morphoscore.constants import MORPHOMETRIC_TIER, PATTERN_TIER
from morphoscore.errors import ConfigurationError

DEFAULT_PRESET = "generic"


def _linear(feature: str, low: float = 0.0, high: float = 1.0, invert: bool = False) -> Dict[str, Any]:
    return {"kind": "linear", "feature": feature, "low": low, "high": high, "invert": invert}


def _direct(feature: str) -> Dict[str, Any]:
    return {"kind": "direct", "feature": feature}


def _criterion(
    name: str,
    weight: float,
    score: Dict[str, Any],
    confidence: Optional[Dict[str, Any]] = None,
    description: str = ""
) -> Dict[str, Any]:
    spec = {"name": name, "weight": weight, "score": score, "description": description}
    if confidence is not None:
        spec["confidence"] = confidence
    return spec


def _category(name: str, tier: str, weight: float, criteria: List[Dict[str, Any]], description: str = ""):
    return {"name": name, "tier": tier, "weight": weight, "criteria": criteria, "description": description}


def _tiers(morphometric: float, pattern: float) -> List[Dict[str, Any]]:
    return [
        {"name": MORPHOMETRIC_TIER, "weight": morphometric},
        {"name": PATTERN_TIER, "weight": pattern},
    ]


def _bands(*bands) -> List[Dict[str, Any]]:
    return [{"label": label, "threshold": threshold} for label, threshold in bands]


# Confiance liée à la taille des populations (saturation à 100 noyaux / 50 fenêtres)
STRUCTURE_CONFIDENCE = {"kind": "population", "feature": "structure_count", "saturation": 100}
WINDOW_CONFIDENCE = {"kind": "population", "feature": "window_count", "saturation": 50}


# =============================================================================
# GENERIC
# =============================================================================

GENERIC = {
    "name": "generic",
    "description": "Organ-agnostic morphometric scoring",
    "categories": [
        _category("nuclear_morphometry", MORPHOMETRIC_TIER, 0.4, [
            _criterion("pleomorphism", 0.4, _direct("pleomorphism_index"), STRUCTURE_CONFIDENCE,
                       "Nuclear size and staining variation"),
            _criterion("contour_irregularity", 0.3, _linear("hull_complexity", 0.0, 0.3), STRUCTURE_CONFIDENCE),
            _criterion("nc_ratio", 0.3, _direct("nc_ratio"), STRUCTURE_CONFIDENCE),
        ]),
        _category("cellularity", MORPHOMETRIC_TIER, 0.3, [
            _criterion("dense_fraction", 0.5, _linear("primary_density", 0.0, 0.5)),
            _criterion("window_density", 0.5, _direct("window_density"), WINDOW_CONFIDENCE),
        ]),
        _category("architecture", MORPHOMETRIC_TIER, 0.3, [
            _criterion("disorganization", 0.6, _linear("architectural_organization", invert=True)),
            _criterion("edge_density", 0.4, _linear("edge_density", 0.0, 0.3)),
        ]),
        _category("texture_pattern", PATTERN_TIER, 0.6, [
            _criterion("chromatin_texture", 0.6, _direct("chromatin_texture"), WINDOW_CONFIDENCE),
            _criterion("mitotic_activity", 0.4, _linear("mitotic_fraction", 0.0, 0.2)),
        ]),
        _category("spatial_pattern", PATTERN_TIER, 0.4, [
            _criterion("heterogeneity", 0.5, _linear("distribution_score", invert=True)),
            _criterion("stain_balance", 0.5, _direct("primary_fraction")),
        ]),
    ],
    "tiers": _tiers(0.7, 0.3),
    "label_bands": _bands(("high", 0.85), ("intermediate", 0.65), ("low", 0.45)),
    "default_label": "minimal",
}


# =============================================================================
# LUNG (WHO differentiation)
# =============================================================================

LUNG = {
    "name": "lung",
    "description": "Lung carcinoma differentiation scoring",
    "categories": [
        _category("multi_scale", MORPHOMETRIC_TIER, 0.327, [
            _criterion("cell_density", 0.3, _direct("window_density"), WINDOW_CONFIDENCE),
            _criterion("chromatin_texture", 0.25, _direct("chromatin_texture"), WINDOW_CONFIDENCE),
            _criterion("architectural_organization", 0.25, _direct("architectural_organization")),
            _criterion("spatial_distribution", 0.2, _direct("distribution_score")),
        ]),
        _category("nuclear_morphometry", MORPHOMETRIC_TIER, 0.254, [
            _criterion("convex_hull", 0.3, _linear("hull_complexity", 0.0, 0.3), STRUCTURE_CONFIDENCE),
            _criterion("pleomorphism", 0.3, _direct("pleomorphism_index"), STRUCTURE_CONFIDENCE),
            _criterion("nc_ratio", 0.2, _direct("nc_ratio"), STRUCTURE_CONFIDENCE),
            _criterion("size_variation", 0.2, _direct("structure_area_cv"), STRUCTURE_CONFIDENCE),
        ]),
        _category("lepidic_pattern", MORPHOMETRIC_TIER, 0.189, [
            _criterion("lepidic_presence", 0.4, _direct("secondary_mean")),
            _criterion("alveolar_preservation", 0.3, _direct("secondary_low_fraction")),
            _criterion("pneumocyte_proliferation", 0.3, _direct("primary_density")),
        ]),
        _category("keratinization", MORPHOMETRIC_TIER, 0.146, [
            _criterion("squamous_differentiation", 0.5, _direct("secondary_band_fraction")),
            _criterion("keratin_pearls", 0.3, _linear("secondary_high_fraction", 0.0, 0.5)),
            _criterion("intercellular_bridges", 0.2, _direct("edge_density")),
        ]),
        _category("mitotic_counting", MORPHOMETRIC_TIER, 0.084, [
            _criterion("mitotic_count", 0.4, _linear("mitotic_fraction", 0.0, 0.2)),
            _criterion("proliferation_rate", 0.3, _linear("local_maxima_density", 0.0, 0.01)),
            _criterion("cell_cycle", 0.3, _linear("mitotic_fraction", 0.0, 0.1)),
        ]),
        _category("cnn_pattern", PATTERN_TIER, 0.67, [
            _criterion("convolutional_features", 0.4, _direct("mean_channel_intensity")),
            _criterion("tumor_classification", 0.4, {
                "kind": "weighted_sum", "coefficients": {"mean_channel_intensity": 0.8}, "intercept": 0.1,
            }),
            _criterion("neural_confidence", 0.2, {
                "kind": "weighted_sum", "coefficients": {"mean_channel_intensity": 0.8}, "intercept": 0.2,
            }),
        ]),
        _category("realtime_pattern", PATTERN_TIER, 0.33, [
            _criterion("feature_density", 0.3, _direct("edge_density")),
            _criterion("analysis_quality", 0.3, {
                "kind": "weighted_sum", "coefficients": {"edge_density": 1.0}, "intercept": 0.2,
            }),
            _criterion("classification_quality", 0.3, {
                "kind": "weighted_sum", "coefficients": {"edge_density": 1.0}, "intercept": 0.3,
            }),
            _criterion("spatial_uniformity", 0.1, _direct("distribution_score")),
        ]),
    ],
    "tiers": _tiers(0.7, 0.3),
    "label_bands": _bands(
        ("poorly_differentiated", 0.8),
        ("moderately_differentiated", 0.6),
        ("well_differentiated", 0.4),
    ),
    "default_label": "reactive",
}


# =============================================================================
# BREAST (Nottingham)
# =============================================================================

# Somme Nottingham 3-9 ramenée sur [0, 1]: <=5 grade I, <=7 grade II
BREAST = {
    "name": "breast",
    "description": "Breast carcinoma Nottingham-style grading",
    "categories": [
        _category("nottingham_grading", MORPHOMETRIC_TIER, 0.327, [
            _criterion("tubule_formation", 0.34, _linear("secondary_band_fraction", invert=True)),
            _criterion("nuclear_pleomorphism", 0.33, _direct("pleomorphism_index"),
                       {"kind": "feature", "feature": "pleomorphism_index",
                        "offset": 0.6, "scale": 0.4, "cap": 0.9}),
            _criterion("mitotic_count", 0.33, {
                "kind": "banded", "feature": "mitotic_fraction",
                "cutoffs": [0.05, 0.15], "levels": [0.0, 0.5, 1.0],
            }),
        ]),
        _category("tumor_boundary", MORPHOMETRIC_TIER, 0.254, [
            _criterion("margin_irregularity", 0.4, _linear("edge_variance", 0.0, 0.1)),
            _criterion("stromal_desmoplasia", 0.3, _direct("secondary_high_fraction")),
            _criterion("host_interface", 0.3, _direct("edge_density")),
        ]),
        _category("ductal_lobular", MORPHOMETRIC_TIER, 0.189, [
            _criterion("ductal_architecture", 0.4, _direct("architectural_organization")),
            _criterion("cohesive_growth", 0.3, _direct("window_density"), WINDOW_CONFIDENCE),
            _criterion("single_file", 0.3, _linear("distribution_score", invert=True)),
        ]),
        _category("hormone_receptor", MORPHOMETRIC_TIER, 0.146, [
            _criterion("chromatin_pattern", 0.4, _direct("chromatin_texture"), WINDOW_CONFIDENCE),
            _criterion("glandular_quality", 0.3, _direct("secondary_band_fraction")),
            _criterion("cellular_density", 0.3, _linear("primary_density", 0.0, 0.5)),
        ]),
        _category("proliferation_index", MORPHOMETRIC_TIER, 0.084, [
            _criterion("mitotic_density", 0.4, _linear("mitotic_fraction", 0.0, 0.2)),
            _criterion("size_heterogeneity", 0.3, _direct("structure_area_cv"), STRUCTURE_CONFIDENCE),
            _criterion("chromatin_condensation", 0.3, _linear("local_maxima_density", 0.0, 0.01)),
        ]),
        _category("breast_cnn", PATTERN_TIER, 0.6, [
            _criterion("glandular_morphology", 0.4, _direct("secondary_band_fraction")),
            _criterion("nuclear_features", 0.6, _direct("pleomorphism_index"), STRUCTURE_CONFIDENCE),
        ]),
        _category("molecular_subtype", PATTERN_TIER, 0.4, [
            _criterion("growth_pattern", 0.5, _direct("primary_fraction")),
            _criterion("stromal_response", 0.5, _direct("secondary_density")),
        ]),
    ],
    "tiers": _tiers(0.77, 0.23),
    "label_bands": _bands(("grade_3", 2 / 3), ("grade_2", 1 / 3)),
    "default_label": "grade_1",
}


# =============================================================================
# COLON (WHO grade)
# =============================================================================

# Poids des tiers: algorithmes mathématiques 0.4 + 0.4, IA 0.2
COLON = {
    "name": "colon",
    "description": "Colorectal adenocarcinoma WHO grading",
    "categories": [
        _category("glandular_architecture", MORPHOMETRIC_TIER, 0.35, [
            _criterion("gland_loss", 0.5, _linear("architectural_organization", invert=True)),
            _criterion("lumen_preservation", 0.5, _linear("secondary_low_fraction", invert=True)),
        ]),
        _category("nuclear_grade", MORPHOMETRIC_TIER, 0.3, [
            _criterion("pleomorphism", 0.4, _direct("pleomorphism_index"), STRUCTURE_CONFIDENCE),
            _criterion("nuclear_crowding", 0.3, _direct("window_density"), WINDOW_CONFIDENCE),
            _criterion("contour_irregularity", 0.3, _linear("hull_complexity", 0.0, 0.3), STRUCTURE_CONFIDENCE),
        ]),
        _category("mitotic_activity", MORPHOMETRIC_TIER, 0.2, [
            _criterion("mitotic_figures", 0.6, _linear("mitotic_fraction", 0.0, 0.2)),
            _criterion("proliferative_hotspots", 0.4, _linear("local_maxima_density", 0.0, 0.01)),
        ]),
        _category("invasion_front", MORPHOMETRIC_TIER, 0.15, [
            _criterion("tumor_budding", 0.6, _linear("edge_density", 0.0, 0.3)),
            _criterion("stromal_reaction", 0.4, _direct("secondary_high_fraction")),
        ]),
        _category("texture_pattern", PATTERN_TIER, 0.6, [
            _criterion("chromatin_texture", 0.5, _direct("chromatin_texture"), WINDOW_CONFIDENCE),
            _criterion("intensity_pattern", 0.5, _direct("mean_channel_intensity")),
        ]),
        _category("msi_pattern", PATTERN_TIER, 0.4, [
            _criterion("texture_instability", 0.55, {
                "kind": "banded", "feature": "chromatin_texture",
                "cutoffs": [0.6, 0.7], "levels": [0.0, 0.6, 1.0],
            }),
            _criterion("intensity_instability", 0.45, {
                "kind": "banded", "feature": "mean_channel_intensity",
                "cutoffs": [0.5, 0.6], "levels": [0.0, 0.5, 1.0],
            }),
        ]),
    ],
    "tiers": _tiers(0.8, 0.2),
    "label_bands": _bands(("high_grade", 0.8), ("intermediate_grade", 0.65)),
    "default_label": "low_grade",
}


# =============================================================================
# REGISTRE
# =============================================================================

PRESETS = {
    "generic": GENERIC,
    "lung": LUNG,
    "breast": BREAST,
    "colon": COLON,
}


def list_presets() -> List[str]:
    """Noms des presets disponibles."""
    return list(PRESETS.keys())


def get_preset(name: str = DEFAULT_PRESET) -> PipelineConfig:
    """
    Retourne la configuration d'un preset.

    Raises:
        ConfigurationError: preset inconnu
    """
    if name not in PRESETS:
        raise ConfigurationError(f"Unknown preset: {name}. Valid: {', '.join(PRESETS)}")
    return PipelineConfig.from_dict(copy.deepcopy(PRESETS[name]))
