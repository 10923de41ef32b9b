"""Command line interface for MutaView."""
from __future__ import annotations

import argparse
import os
import sys

from engine.export import compare_structures, export_comparison
from engine.logging_utils import setup_run_logger
from engine.models import ServiceConfig
from engine.mutation import annotations_for, find_domain, parse_mutation
from engine.report import generate_report
from engine.services import (
    ServiceError,
    build_explanation_prompt,
    explain_mutation,
    fetch_structure,
    fold_mutant,
    lookup_gene,
)
from engine.structure import confidence_label, residue_average_confidence


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8") as handle:
        return handle.read()


def _write_text(path: str, text: str) -> None:
    temp_path = path + ".tmp"
    with open(temp_path, "w", encoding="utf-8") as handle:
        handle.write(text)
    os.replace(temp_path, path)


def _print_summary(result) -> None:
    summary = result.summary
    print(f"Residues compared: {summary.n_residues}")
    if summary.max_residue is None:
        print("No shared residues between the two structures.")
        return
    print(f"Mean displacement: {summary.mean:.2f} A")
    print(f"Max displacement: {summary.max:.2f} A at residue {summary.max_residue}")
    print(f"Residues above {summary.threshold:g} A: {summary.n_above_threshold}")
    for resi, value in summary.top_residues:
        print(f"  - residue {resi}: {value:.2f} A")


def compare_command(args: argparse.Namespace) -> None:
    logger, log_path = setup_run_logger(args.output)
    logger.info("CLI compare requested: %s vs %s", args.wild, args.mutant)
    result = compare_structures(
        _read_text(args.wild),
        _read_text(args.mutant),
        threshold=args.threshold,
        metadata={"wild_path": args.wild, "mutant_path": args.mutant},
    )
    outputs = export_comparison(result, args.output, prefix=args.prefix)
    if args.report:
        outputs["report"] = generate_report(
            result,
            args.output,
            title=args.prefix,
            report_format=args.report,
            command_line=" ".join(sys.argv),
        )
    _print_summary(result)
    print(f"Log written to {log_path}")
    for key, path in outputs.items():
        print(f"{key}: {path}")


def lookup_command(args: argparse.Namespace) -> None:
    config = ServiceConfig.from_env()
    mutation = parse_mutation(args.query)
    protein = lookup_gene(mutation.gene, config)
    structure = fetch_structure(protein.uniprot_id, config)

    print(f"Gene: {mutation.gene}  Mutation: {mutation.notation}")
    print(f"Protein: {protein.protein_name} ({protein.uniprot_id})")
    print(f"Domain: {find_domain(protein.domains, mutation.position) or 'No annotated domain'}")
    plddt = residue_average_confidence(structure.pdb_text, mutation.position)
    if plddt is None:
        print(f"pLDDT at position {mutation.position}: N/A")
    else:
        print(f"pLDDT at position {mutation.position}: {plddt} ({confidence_label(plddt)})")
    print(f"Average pLDDT: {structure.avg_confidence}")
    ann = annotations_for(mutation)
    print(f"AlphaMissense: {ann['alphamissense'] if ann else 'No data available'}")
    print(f"ClinVar: {ann['clinvar'] if ann else 'No data available'}")
    print(f"Model: {structure.model_url}")

    if args.save_pdb:
        _write_text(args.save_pdb, structure.pdb_text)
        print(f"Structure written to {args.save_pdb}")

    if args.explain:
        prompt = build_explanation_prompt(
            protein_name=protein.protein_name,
            gene_name=protein.gene_name,
            mutation=mutation.notation,
            domain=find_domain(protein.domains, mutation.position) or "No annotated domain",
            plddt=plddt if plddt is not None else structure.avg_confidence,
            alphamissense=ann["alphamissense"] if ann else "Not available",
            clinvar=ann["clinvar"] if ann else "Not available",
        )
        try:
            print()
            print(explain_mutation(prompt, config))
        except ServiceError as exc:
            print(f"Explanation unavailable: {exc}")


def fold_command(args: argparse.Namespace) -> None:
    config = ServiceConfig.from_env()
    logger, log_path = setup_run_logger(args.output)
    mutation = parse_mutation(args.query)
    logger.info("CLI fold requested: %s %s", mutation.gene, mutation.notation)

    protein = lookup_gene(mutation.gene, config)
    structure = fetch_structure(protein.uniprot_id, config)
    fold = fold_mutant(protein.sequence, mutation, config)
    if fold.note:
        print(fold.note)

    prefix = f"{mutation.gene}_{mutation.notation}"
    os.makedirs(args.output, exist_ok=True)
    wild_path = os.path.join(args.output, f"{prefix}_wild.pdb")
    mutant_path = os.path.join(args.output, f"{prefix}_mutant.pdb")
    _write_text(wild_path, structure.pdb_text)
    _write_text(mutant_path, fold.pdb_text)

    site = fold.corrected_position or mutation.position
    result = compare_structures(
        structure.pdb_text,
        fold.pdb_text,
        threshold=args.threshold,
        metadata={"mutation": mutation.to_dict(), "site": site, "fold": fold.to_dict()},
    )
    outputs = export_comparison(result, args.output, prefix=prefix)
    if args.report:
        outputs["report"] = generate_report(
            result,
            args.output,
            title=f"{mutation.gene} {mutation.notation}",
            site=site,
            report_format=args.report,
            command_line=" ".join(sys.argv),
        )
    _print_summary(result)
    site_value = result.displacement.get(site)
    if site_value is not None:
        print(f"Displacement at mutation site {site}: {site_value:.2f} A")
    print(f"Mutant average pLDDT: {fold.avg_confidence}")
    print(f"Log written to {log_path}")
    for key, path in {"wild_pdb": wild_path, "mutant_pdb": mutant_path, **outputs}.items():
        print(f"{key}: {path}")


def main() -> None:
    parser = argparse.ArgumentParser(description="MutaView CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    compare_parser = subparsers.add_parser("compare", help="Compare two PDB files per residue")
    compare_parser.add_argument("--wild", required=True, help="Wild-type PDB file")
    compare_parser.add_argument("--mutant", required=True, help="Mutant PDB file")
    compare_parser.add_argument("--output", required=True, help="Output directory")
    compare_parser.add_argument("--prefix", default="comparison", help="Output filename prefix")
    compare_parser.add_argument(
        "--threshold", type=float, default=2.0, help="Displacement threshold in angstrom"
    )
    compare_parser.add_argument("--report", choices=["md", "html"], help="Also write a report with plots")
    compare_parser.set_defaults(func=compare_command)

    lookup_parser = subparsers.add_parser("lookup", help="Look up a mutation, e.g. 'TP53 R175H'")
    lookup_parser.add_argument("query", help="Gene and mutation, e.g. 'TP53 R175H'")
    lookup_parser.add_argument("--save-pdb", help="Write the AlphaFold structure to this path")
    lookup_parser.add_argument("--explain", action="store_true", help="Request an AI explanation")
    lookup_parser.set_defaults(func=lookup_command)

    fold_parser = subparsers.add_parser("fold", help="Fold the mutant with ESMFold and compare")
    fold_parser.add_argument("query", help="Gene and mutation, e.g. 'TP53 R175H'")
    fold_parser.add_argument("--output", required=True, help="Output directory")
    fold_parser.add_argument(
        "--threshold", type=float, default=2.0, help="Displacement threshold in angstrom"
    )
    fold_parser.add_argument("--report", choices=["md", "html"], help="Also write a report with plots")
    fold_parser.set_defaults(func=fold_command)

    args = parser.parse_args()
    try:
        args.func(args)
    except (ServiceError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
