"""
seqhmm model I/O module

Models are saved as JSON (human-readable, fully portable). Loading accepts
the JSON written by save_model() and validates the parameters through the
same constructors used to build models in code.
"""

import json
import os
import warnings
from typing import Any, Dict

from seqhmm.core.model import SeqHMM, build_hmm, build_mhmm


# =============================================================================
# Loading
# =============================================================================

def load_model(filepath: str, validate: bool = True) -> SeqHMM:
    """
    Load a model from a JSON file.

    Args:
        filepath: Path to model file
        validate: If True, check the parameters (stochastic rows, matching
            shapes) as build_hmm()/build_mhmm() do

    Returns:
        SeqHMM model instance
    """
    with open(filepath, 'r') as f:
        data = json.load(f)
    if data.get('model_type') not in ('hmm', 'mhmm'):
        raise ValueError(f"{filepath} does not contain a seqhmm model.")
    return model_from_dict(data, validate=validate)


def model_from_dict(data: Dict[str, Any], validate: bool = True) -> SeqHMM:
    """Rebuild a model from SeqHMM.to_dict() output."""
    if not validate:
        return SeqHMM.from_dict(data)

    clusters = data['clusters']
    if data.get('model_type') == 'hmm' and len(clusters) == 1:
        c = clusters[0]
        return build_hmm(
            c['transition'], c['emission'], c['initial'],
            state_names=c.get('state_names'),
            channel_names=data.get('channel_names') or None,
            symbol_names=data.get('symbol_names') or None,
        )

    return build_mhmm(
        [c['transition'] for c in clusters],
        [c['emission'] for c in clusters],
        [c['initial'] for c in clusters],
        covariates=data.get('covariates'),
        coefficients=data.get('coefficients'),
        cluster_names=data.get('cluster_names') or None,
        state_names=[c.get('state_names') for c in clusters],
        channel_names=data.get('channel_names') or None,
        symbol_names=data.get('symbol_names') or None,
        covariate_names=data.get('covariate_names') or None,
    )


# =============================================================================
# Saving (JSON only)
# =============================================================================

def save_model(model: SeqHMM, filepath: str) -> str:
    """
    Save model to file in JSON format.

    If the filepath does not end in .json, the extension is replaced with .json
    and a warning is issued.

    Args:
        model: SeqHMM model
        filepath: Output path (.json)

    Returns:
        Path actually written
    """
    if not filepath.endswith('.json'):
        old_path = filepath
        base, _ = os.path.splitext(filepath)
        filepath = base + '.json'
        warnings.warn(
            f"Only JSON format is supported for saving. "
            f"Saving to '{filepath}' instead of '{old_path}'."
        )

    with open(filepath, 'w') as f:
        json.dump(model.to_dict(), f, indent=2)
    return filepath
