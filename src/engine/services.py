"""HTTP clients for UniProt, AlphaFold, ESMFold and Gemini."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from engine.models import Domain, FoldResult, ParsedMutation, ProteinInfo, ServiceConfig, StructureData
from engine.mutation import apply_substitution, resolve_position
from engine.structure import average_confidence

logger = logging.getLogger(__name__)


class ServiceError(RuntimeError):
    """A remote service failed or returned something unusable."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


def _get(url: str, config: ServiceConfig, **kwargs) -> requests.Response:
    try:
        return requests.get(url, timeout=config.http_timeout, **kwargs)
    except requests.RequestException as exc:
        raise ServiceError(f"Request to {url} failed: {exc}") from exc


def _extract_protein_name(entry: Dict[str, Any]) -> str:
    desc = entry.get("proteinDescription", {}) or {}
    return ((desc.get("recommendedName") or {}).get("fullName") or {}).get("value", "")


def _extract_gene_name(entry: Dict[str, Any]) -> str:
    genes = entry.get("genes") or []
    if not genes:
        return ""
    return (genes[0].get("geneName") or {}).get("value", "")


def _extract_function(entry: Dict[str, Any]) -> str:
    for comment in entry.get("comments") or []:
        if comment.get("commentType") != "FUNCTION":
            continue
        texts = comment.get("texts") or []
        if texts:
            return texts[0].get("value", "")
    return ""


def _extract_domains(entry: Dict[str, Any]) -> List[Domain]:
    domains = []
    for feature in entry.get("features") or []:
        if feature.get("type") != "Domain":
            continue
        location = feature.get("location") or {}
        domains.append(
            Domain(
                name=feature.get("description", "") or "",
                start=int((location.get("start") or {}).get("value") or 0),
                end=int((location.get("end") or {}).get("value") or 0),
            )
        )
    return domains


def lookup_gene(gene: str, config: Optional[ServiceConfig] = None) -> ProteinInfo:
    """Reviewed human UniProt entry for ``gene``."""
    config = config or ServiceConfig.from_env()
    query = f"(gene:{gene}) AND (organism_id:{config.organism_id}) AND (reviewed:true)"
    params = {
        "query": query,
        "format": "json",
        "fields": "accession,gene_names,protein_name,ft_domain,cc_function,sequence",
    }
    logger.info("UniProt lookup for gene %s", gene)
    response = _get(
        config.uniprot_search_url,
        config,
        params=params,
        headers={"Accept": "application/json"},
    )
    if response.status_code != 200:
        raise ServiceError(
            f"UniProt API request failed with status {response.status_code}",
            status=response.status_code,
        )
    results = response.json().get("results", [])
    if not results:
        raise ServiceError(f"No results found for gene: {gene}", status=404)

    entry = results[0]
    return ProteinInfo(
        uniprot_id=entry.get("primaryAccession", ""),
        protein_name=_extract_protein_name(entry),
        gene_name=_extract_gene_name(entry),
        function=_extract_function(entry),
        domains=_extract_domains(entry),
        sequence=(entry.get("sequence") or {}).get("value", ""),
    )


def fetch_structure(uniprot_id: str, config: Optional[ServiceConfig] = None) -> StructureData:
    """AlphaFold model PDB text for a UniProt accession."""
    config = config or ServiceConfig.from_env()
    logger.info("AlphaFold prediction lookup for %s", uniprot_id)
    response = _get(f"{config.alphafold_api_url}/{uniprot_id}", config)
    if response.status_code == 404:
        raise ServiceError(f"No AlphaFold prediction found for UniProt ID: {uniprot_id}", status=404)
    if response.status_code != 200:
        raise ServiceError(
            f"AlphaFold API returned status {response.status_code}",
            status=response.status_code,
        )

    predictions = response.json()
    if not isinstance(predictions, list) or not predictions:
        raise ServiceError(f"No AlphaFold prediction found for UniProt ID: {uniprot_id}", status=404)
    pdb_url = predictions[0].get("pdbUrl")
    if not pdb_url:
        raise ServiceError("AlphaFold prediction does not include a PDB file URL")

    pdb_response = _get(pdb_url, config)
    if pdb_response.status_code != 200:
        raise ServiceError(
            f"Failed to fetch PDB file: HTTP {pdb_response.status_code}",
            status=pdb_response.status_code,
        )
    pdb_text = pdb_response.text
    return StructureData(
        pdb_text=pdb_text,
        avg_confidence=average_confidence(pdb_text),
        pdb_url=pdb_url,
        model_url=f"{config.alphafold_entry_url}/{uniprot_id}",
    )


def fold_mutant(
    sequence: str,
    mutation: ParsedMutation,
    config: Optional[ServiceConfig] = None,
) -> FoldResult:
    """Predict the mutant structure with ESMFold.

    Numbering is reconciled first, so the substitution may land a few residues
    away from ``mutation.position``; the result reports where.
    """
    config = config or ServiceConfig.from_env()
    if not sequence:
        raise ValueError("A wild-type sequence is required for folding.")
    resolved = resolve_position(sequence, mutation.position, mutation.original)
    if len(sequence) > config.esmfold_max_residues:
        raise ValueError(
            f"Sequence is {len(sequence)} residues. "
            f"ESMFold server limit is {config.esmfold_max_residues}."
        )
    mutant_sequence = apply_substitution(sequence, resolved.position, mutation.mutant)

    logger.info("ESMFold request for %s (%d residues)", mutation.notation, len(mutant_sequence))
    try:
        response = requests.post(
            config.esmfold_url,
            data=mutant_sequence,
            headers={"Content-Type": "text/plain"},
            timeout=config.esmfold_timeout,
        )
    except requests.Timeout as exc:
        raise ServiceError(
            f"ESMFold prediction timed out after {config.esmfold_timeout:.0f} seconds"
        ) from exc
    except requests.RequestException as exc:
        raise ServiceError(
            f"Failed to connect to ESMFold API: {exc}. The server may be temporarily unavailable."
        ) from exc
    if response.status_code != 200:
        raise ServiceError(response.text or f"ESMFold returned status {response.status_code}",
                           status=response.status_code)

    pdb_text = response.text
    return FoldResult(
        pdb_text=pdb_text,
        avg_confidence=average_confidence(pdb_text),
        mutant_sequence=mutant_sequence,
        corrected_position=resolved.position if resolved.corrected else None,
        note=resolved.note,
    )


def build_explanation_prompt(
    protein_name: str,
    gene_name: str,
    mutation: str,
    domain: str,
    plddt: float,
    alphamissense: str,
    clinvar: str,
) -> str:
    return (
        "You are a structural biology expert explaining a protein mutation to a physician. "
        "Be concise (2-3 sentences).\n\n"
        f"Protein: {protein_name} ({gene_name})\n"
        f"Mutation: {mutation}\n"
        f"Domain: {domain}\n"
        f"AlphaFold pLDDT at mutation site: {plddt}\n"
        f"AlphaMissense pathogenicity: {alphamissense}\n"
        f"ClinVar classification: {clinvar}\n\n"
        "Explain in plain language why this mutation is likely damaging to protein function. "
        "Reference the structural context (domain, confidence) and clinical significance."
    )


def explain_mutation(prompt: str, config: Optional[ServiceConfig] = None) -> str:
    config = config or ServiceConfig.from_env()
    if not config.gemini_api_key:
        raise ServiceError("GEMINI_API_KEY is not set.")
    url = f"{config.gemini_base_url}/models/{config.gemini_model}:generateContent"
    body = {"contents": [{"parts": [{"text": prompt}]}]}
    try:
        response = requests.post(
            url,
            params={"key": config.gemini_api_key},
            json=body,
            timeout=config.http_timeout,
        )
    except requests.RequestException as exc:
        raise ServiceError(f"Gemini API request failed: {exc}") from exc
    if response.status_code != 200:
        raise ServiceError(
            f"Gemini API error ({response.status_code}): {response.text}",
            status=response.status_code,
        )
    data = response.json()
    try:
        text = data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        text = None
    if not text:
        raise ServiceError("Gemini API returned an unexpected response structure")
    return text
