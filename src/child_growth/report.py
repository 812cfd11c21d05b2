"""
Complete analysis report: growth data -> exploration -> REML fit ->
Bayesian fits (HMC and Gibbs) -> comparison -> rendered document.

Run from the command line:
    child-growth-report --output report_output
    child-growth-report --data data/child_growth.csv --backends hmc
    child-growth-report --config report.json --no-bayes
"""
import argparse
import json
import sys
import textwrap
from dataclasses import asdict, dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
import matplotlib
import matplotlib.pyplot as plt
from matplotlib.backends.backend_pdf import PdfPages

from .data import (
    GrowthDataLoader,
    check_data_integrity,
    clean_growth_data,
    create_sample_growth_data,
    describe_growth_data,
    standardize_growth_data,
)
from .exploration import plot_all
from .frequentist import FrequentistMixedModel, MixedModelConfig
from .comparison import (
    build_comparison_table,
    interval_agreement,
    plot_comparison,
    write_narrative,
)


REPORT_TITLE = "Child weight growth: frequentist and Bayesian mixed-effects models"

NARRATIVE_HEADINGS = {
    'effects': 'Fixed effects',
    'model': 'Random effects and collinearity',
    'diagnostics': 'Model diagnostics',
    'bayesian': 'Bayesian fits',
    'comparison': 'Frequentist vs Bayesian',
}


# ═══════════════════════════════════════════════════════════════
# Configuration
# ═══════════════════════════════════════════════════════════════

@dataclass
class ReportConfig:
    """Configuration for a full report run."""
    data_path: Optional[str] = None      # CSV; the sample dataset is used when None
    sample_seed: int = 1234
    n_children: int = 200
    output_dir: str = 'report_output'

    # Frequentist model
    formula: str = 'wt ~ sex + mage + lit + age'
    re_formula: str = '~age'
    alpha: float = 0.05

    # Bayesian models
    run_bayesian: bool = True
    backends: List[str] = field(default_factory=lambda: ['hmc', 'gibbs'])
    n_chains: int = 4
    n_draws: int = 1000
    n_tune: int = 1000
    gibbs_draws: int = 2000              # Gibbs sweeps mix slower than NUTS
    cores: int = 1
    seed: int = 42
    credible_interval: float = 0.95
    save_traces: bool = True

    # Output
    write_pdf: bool = True
    write_markdown: bool = True
    references_path: Optional[str] = None  # bibliography CSV; packaged list when None
    citation_style: str = 'author-year'    # or 'numeric'

    @classmethod
    def from_json(cls, filepath: str) -> 'ReportConfig':
        path = Path(filepath)
        if not path.exists():
            raise FileNotFoundError(f"Config not found at {filepath}")
        with open(path, 'r') as f:
            config_dict = json.load(f)
        unknown = set(config_dict) - set(cls.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown report config keys: {sorted(unknown)}")
        return cls(**config_dict)

    def to_json(self, filepath: str):
        with open(filepath, 'w') as f:
            json.dump(asdict(self), f, indent=2)


# ═══════════════════════════════════════════════════════════════
# References
# ═══════════════════════════════════════════════════════════════

DEFAULT_REFERENCES = Path(__file__).parent / 'references.csv'
REFERENCE_COLUMNS = ['key', 'authors', 'year', 'title', 'source']
CITATION_STYLES = ('author-year', 'numeric')

# Sources cited in the report text, by topic
CITED_KEYS = {
    'data': ['west1991', 'faraway2016'],
    'software': ['seabold2010', 'abrilpla2023', 'kumar2019'],
    'samplers': ['hoffman2014', 'neal2003', 'vehtari2021'],
}


def load_references(path: Optional[str] = None) -> pd.DataFrame:
    """Read a bibliography CSV (key, authors, year, title, source).

    Authors are separated by ';' and written 'Surname, Initials'. The
    packaged bibliography is used when ``path`` is None.
    """
    path = Path(path) if path else DEFAULT_REFERENCES
    if not path.exists():
        raise FileNotFoundError(f"References file not found: {path}")

    refs = pd.read_csv(path, dtype=str).fillna('')
    missing = [c for c in REFERENCE_COLUMNS if c not in refs.columns]
    if missing:
        raise ValueError(f"Missing reference columns in {path.name}: {missing}")
    duplicated = refs.loc[refs['key'].duplicated(), 'key'].tolist()
    if duplicated:
        raise ValueError(f"Duplicate reference keys: {duplicated}")
    return refs.reset_index(drop=True)


def _check_style(style: str):
    if style not in CITATION_STYLES:
        raise ValueError(f"Unknown citation style '{style}', expected one of {CITATION_STYLES}")


def _surnames(authors: str) -> List[str]:
    return [a.split(',')[0].strip() for a in authors.split(';') if a.strip()]


def cite(refs: pd.DataFrame, keys: List[str], style: str = 'author-year') -> str:
    """In-text citation: '(Neal 2003; Hoffman and Gelman 2014)' or '[7, 6]'."""
    _check_style(style)
    known = list(refs['key'])
    unknown = [k for k in keys if k not in known]
    if unknown:
        raise ValueError(f"Unknown reference keys: {unknown}")

    if style == 'numeric':
        return "[" + ", ".join(str(known.index(k) + 1) for k in keys) + "]"

    parts = []
    for k in keys:
        row = refs.iloc[known.index(k)]
        names = _surnames(row['authors'])
        if len(names) > 2:
            who = f"{names[0]} et al."
        elif len(names) == 2:
            who = f"{names[0]} and {names[1]}"
        else:
            who = names[0] if names else row['key']
        parts.append(f"{who} {row['year']}")
    return "(" + "; ".join(parts) + ")"


def format_references(refs: pd.DataFrame, style: str = 'author-year') -> List[str]:
    """Reference list entries, numbered in file order or sorted by author."""
    _check_style(style)
    entries = []
    if style == 'numeric':
        for i, row in enumerate(refs.itertuples(index=False), start=1):
            authors = row.authors.replace(';', ',').rstrip('.')
            entries.append(f"[{i}] {authors}. {row.title}. {row.source}, {row.year}.")
        return entries

    ordered = refs.assign(_first=refs['authors'].map(lambda a: (_surnames(a) or [''])[0]))
    for row in ordered.sort_values(['_first', 'year']).itertuples(index=False):
        authors = row.authors.replace(';', ',')
        entries.append(f"{authors} ({row.year}). {row.title}. {row.source}.")
    return entries


def _report_citations(refs: pd.DataFrame, style: str) -> Dict[str, str]:
    """Citations for the report text, skipping keys a custom bibliography lacks."""
    known = set(refs['key'])
    citations = {}
    for topic, keys in CITED_KEYS.items():
        present = [k for k in keys if k in known]
        citations[topic] = f" {cite(refs, present, style)}" if present else ''
    return citations


# ═══════════════════════════════════════════════════════════════
# Pipeline
# ═══════════════════════════════════════════════════════════════

def _save_table(df: pd.DataFrame, out: Path, name: str, index: bool = True):
    df.to_csv(out / f"{name}.csv", index=index)


def _load_raw(config: ReportConfig) -> pd.DataFrame:
    if config.data_path:
        path = Path(config.data_path)
        loader = GrowthDataLoader(str(path.parent))
        return loader.load_csv(path.name)
    print(f"  Using sample dataset (seed={config.sample_seed}, children={config.n_children})")
    return create_sample_growth_data(n_children=config.n_children, seed=config.sample_seed)


def _prediction_grid(clean: pd.DataFrame) -> pd.DataFrame:
    """Population-level prediction grid: ages 0-60 months by sex and literacy."""
    rows = []
    mage = float(clean['mage'].median())
    for sex in clean['sex'].cat.categories:
        for lit in clean['lit'].cat.categories:
            for age in range(0, 61, 12):
                rows.append({'sex': sex, 'lit': lit, 'mage': mage, 'age': age})
    return pd.DataFrame(rows)


def _next_visit(clean: pd.DataFrame, n_children: int = 10, months_ahead: int = 4) -> pd.DataFrame:
    """Next-visit rows for the first children, used for child-level predictions."""
    last = clean.sort_values('age').groupby('id', observed=True).tail(1)
    last = last.sort_values('id').head(n_children).copy()
    last['age'] = last['age'] + months_ahead
    return last[['id', 'sex', 'mage', 'lit', 'age']].reset_index(drop=True)


def run_report(config: Optional[ReportConfig] = None) -> Dict:
    """Run every analysis stage and write figures, tables and documents.

    Args:
        config: Report configuration (defaults if None)

    Returns:
        dict with 'config', 'data', 'tables', 'figures', 'narrative',
        'references', 'citations', 'models' and 'outputs'
    """
    config = config or ReportConfig()
    out = Path(config.output_dir)
    fig_dir = out / 'figures'
    table_dir = out / 'tables'
    for d in (out, fig_dir, table_dir):
        d.mkdir(parents=True, exist_ok=True)

    tables: Dict[str, pd.DataFrame] = {}
    figures: Dict[str, plt.Figure] = {}
    models: Dict = {}

    print("\n" + "=" * 70)
    print("CHILD GROWTH MIXED-EFFECTS REPORT")
    print("=" * 70)

    # Bibliography first so a bad file or style fails before any fitting
    refs = load_references(config.references_path)
    references = format_references(refs, config.citation_style)
    citations = _report_citations(refs, config.citation_style)
    print(f"[Report] {len(references)} references, {config.citation_style} style")

    # Step 1: Load and clean data
    print("\n[1/5] Loading and cleaning data...")
    raw = _load_raw(config)
    clean = clean_growth_data(raw)
    scaled, scaling = standardize_growth_data(clean)
    integrity = check_data_integrity(raw, clean, scaled)

    descriptives = describe_growth_data(clean)
    for name, df in descriptives.items():
        tables[f'descriptive_{name}'] = df
    tables['integrity_checks'] = pd.DataFrame(
        [{'check': k, 'passed': v} for k, v in integrity.items()])
    tables['scaling'] = pd.DataFrame(
        [{'column': k, 'mean': m, 'sd': s} for k, (m, s) in scaling.items()])

    # Step 2: Exploratory figures
    print("\n[2/5] Building exploratory figures...")
    figures.update(plot_all(clean, output_dir=str(fig_dir)))

    # Step 3: Frequentist mixed model
    print("\n[3/5] Fitting REML mixed model...")
    lmm = FrequentistMixedModel(MixedModelConfig(
        formula=config.formula,
        re_formula=config.re_formula,
        alpha=config.alpha,
    ))
    lmm.fit(clean)
    lmm.print_summary()
    models['reml'] = lmm

    freq_coefs = lmm.coefficient_table()
    variance = lmm.variance_components()
    residuals = lmm.residual_diagnostics()
    collinearity = lmm.collinearity_table()
    leverage = lmm.leverage_table()

    tables['reml_coefficients'] = freq_coefs
    tables['reml_variance_components'] = variance
    tables['reml_fit_statistics'] = pd.DataFrame([lmm.fit_statistics()])
    tables['reml_residual_diagnostics'] = pd.DataFrame([residuals])
    tables['reml_collinearity'] = collinearity
    tables['reml_influential_records'] = (
        leverage[leverage['influential']].sort_values('cooks_distance', ascending=False).head(15))
    tables['reml_random_structure'] = lmm.compare_random_structures()

    grid = _prediction_grid(clean)
    grid['predicted_wt'] = lmm.predict(grid, include_random=False)
    tables['reml_population_predictions'] = grid
    upcoming = _next_visit(clean)
    upcoming['predicted_wt'] = lmm.predict(upcoming, include_random=True)
    upcoming['population_wt'] = lmm.predict(upcoming, include_random=False)
    tables['reml_child_predictions'] = upcoming

    figures['reml_diagnostics'] = lmm.plot_diagnostics(save_path=str(fig_dir / 'reml'))

    # Step 4: Bayesian mixed models
    convergence = {}
    ppc = {}
    bayes_coefs = {}
    if config.run_bayesian and config.backends:
        print(f"\n[4/5] Fitting Bayesian mixed models ({', '.join(config.backends)})...")
        from .bayesian import (
            BayesianConfig,
            BayesianMixedModel,
            compare_backends,
            plot_backend_forest,
        )

        bayes_models = {}
        for backend in config.backends:
            bayes = BayesianMixedModel(BayesianConfig(
                backend=backend,
                n_chains=config.n_chains,
                n_draws=config.gibbs_draws if backend == 'gibbs' else config.n_draws,
                n_tune=config.n_tune,
                cores=config.cores,
                seed=config.seed,
                credible_interval=config.credible_interval,
            ))
            bayes.fit(scaled)
            bayes_models[backend] = bayes
            models[backend] = bayes

            convergence[backend] = bayes.convergence_diagnostics()
            ppc[backend] = bayes.posterior_predictive_check()
            bayes_coefs[backend] = bayes.original_scale_coefficients(scaling)

            tables[f'{backend}_convergence'] = convergence[backend]
            tables[f'{backend}_original_scale'] = bayes_coefs[backend]
            tables[f'{backend}_ppc'] = pd.DataFrame([ppc[backend]])

            prefix = str(fig_dir / backend)
            figures[f'{backend}_trace'] = bayes.plot_trace(save_path=prefix)
            figures[f'{backend}_coefficients'] = bayes.plot_coefficients(save_path=prefix)
            figures[f'{backend}_ppc'] = bayes.plot_ppc(save_path=prefix)

            if config.save_traces:
                bayes.save_trace(str(out / f'{backend}_trace.nc'))

        tables['backend_comparison'] = compare_backends(bayes_models)
        if len(bayes_models) > 1:
            figures['backend_forest'] = plot_backend_forest(
                bayes_models, credible_interval=config.credible_interval,
                save_path=str(fig_dir / 'backend_forest.png'))
    else:
        print("\n[4/5] Bayesian stage skipped")

    # Step 5: Comparison, narrative and rendering
    print("\n[5/5] Comparing methods and rendering report...")
    comparison = build_comparison_table(freq_coefs, bayes_coefs)
    agreement = interval_agreement(comparison)
    tables['method_comparison'] = comparison
    tables['method_agreement'] = agreement
    figures['method_comparison'] = plot_comparison(
        comparison, save_path=str(fig_dir / 'method_comparison.png'))

    narrative = write_narrative(
        freq_coefs,
        variance=variance,
        residuals=residuals,
        collinearity=collinearity,
        agreement=agreement,
        convergence=convergence,
        ppc=ppc,
        alpha=config.alpha,
    )

    for name, df in tables.items():
        _save_table(df, table_dir, name)

    results = {
        'config': config,
        'data': {'raw': raw, 'clean': clean, 'scaled': scaled, 'scaling': scaling},
        'tables': tables,
        'figures': figures,
        'narrative': narrative,
        'references': references,
        'citations': citations,
        'models': models,
        'outputs': {},
    }

    if config.write_pdf:
        results['outputs']['pdf'] = render_pdf(results, out / 'report.pdf')
    if config.write_markdown:
        results['outputs']['markdown'] = render_markdown(results, out / 'report.md', fig_dir)

    for fig in figures.values():
        plt.close(fig)

    print("\n" + "=" * 70)
    print(f"Report written to {out.resolve()}")
    print("=" * 70)
    return results


# ═══════════════════════════════════════════════════════════════
# Rendering
# ═══════════════════════════════════════════════════════════════

PDF_TABLES = [
    ('descriptive_numeric', 'Descriptive statistics'),
    ('descriptive_categorical', 'Records and children by category'),
    ('integrity_checks', 'Data integrity checks'),
    ('reml_coefficients', 'REML fixed effects'),
    ('reml_variance_components', 'REML variance components'),
    ('reml_residual_diagnostics', 'Residual diagnostics'),
    ('reml_collinearity', 'Variance inflation factors'),
    ('reml_influential_records', 'Influential records'),
    ('reml_random_structure', 'Random-effects structure'),
    ('reml_population_predictions', 'Population-level predictions'),
    ('reml_child_predictions', 'Child-level predictions at the next visit'),
    ('hmc_convergence', 'HMC convergence diagnostics'),
    ('gibbs_convergence', 'Gibbs convergence diagnostics'),
    ('hmc_original_scale', 'HMC posterior (original scale)'),
    ('gibbs_original_scale', 'Gibbs posterior (original scale)'),
    ('hmc_ppc', 'HMC posterior predictive check'),
    ('gibbs_ppc', 'Gibbs posterior predictive check'),
    ('backend_comparison', 'Sampling backends'),
    ('method_comparison', 'Estimates by method'),
]

ROWS_PER_PAGE = 28


def _text_page(pdf: PdfPages, title: str, paragraphs: List[str], width: int = 90):
    fig = plt.figure(figsize=(8.27, 11.69))
    fig.text(0.08, 0.94, title, fontsize=15, weight='bold', va='top')
    y = 0.89
    for para in paragraphs:
        lines = textwrap.wrap(para, width=width) or ['']
        for line in lines:
            fig.text(0.08, y, line, fontsize=10, va='top')
            y -= 0.022
        y -= 0.012
        if y < 0.06:
            pdf.savefig(fig)
            plt.close(fig)
            fig = plt.figure(figsize=(8.27, 11.69))
            y = 0.94
    pdf.savefig(fig)
    plt.close(fig)


def _format_table(df: pd.DataFrame) -> pd.DataFrame:
    shown = df.reset_index() if df.index.name or not isinstance(df.index, pd.RangeIndex) else df
    return shown.apply(lambda col: col.map(
        lambda v: f"{v:.4g}" if isinstance(v, (float, np.floating)) else str(v)))


def _table_pages(pdf: PdfPages, title: str, df: pd.DataFrame):
    shown = _format_table(df)
    for start in range(0, max(len(shown), 1), ROWS_PER_PAGE):
        chunk = shown.iloc[start:start + ROWS_PER_PAGE]
        fig, ax = plt.subplots(figsize=(11.69, 8.27))
        ax.axis('off')
        ax.set_title(title if start == 0 else f"{title} (continued)", fontsize=13, loc='left')
        if len(chunk):
            table = ax.table(cellText=chunk.values, colLabels=list(chunk.columns),
                             loc='upper center', cellLoc='right')
            table.auto_set_font_size(False)
            table.set_fontsize(8)
            table.scale(1.0, 1.3)
        pdf.savefig(fig)
        plt.close(fig)


def _methods_paragraph(results: Dict) -> str:
    cites = results.get('citations') or {}
    return (
        "Weight is modelled on sex, mother's age, mother's literacy and age, with a "
        f"child-specific intercept and age slope{cites.get('data', '')}. The model is "
        "fitted by REML and, on standardised data, by Bayesian sampling with a Hamiltonian "
        "Monte Carlo backend and a Gibbs-style backend"
        f"{cites.get('samplers', '')}. Software: statsmodels, PyMC and ArviZ"
        f"{cites.get('software', '')}."
    )


def render_pdf(results: Dict, path) -> Path:
    """Render the paginated PDF report.

    Pages: title and data summary, narrative, tables, then every figure,
    references.
    """
    path = Path(path)
    clean = results['data']['clean']
    raw = results['data']['raw']
    tables = results['tables']

    with PdfPages(path) as pdf:
        summary = [
            f"Generated {date.today().isoformat()}.",
            f"Raw records: {len(raw)}; records with a weight: {len(clean)}; "
            f"children: {clean['id'].nunique()}.",
            f"Ages {int(clean['age'].min())}-{int(clean['age'].max())} months; "
            f"weights {clean['wt'].min():.1f}-{clean['wt'].max():.1f} kg.",
            _methods_paragraph(results),
        ]
        _text_page(pdf, REPORT_TITLE, summary)

        paragraphs = []
        for key, heading in NARRATIVE_HEADINGS.items():
            notes = results['narrative'].get(key) or []
            if notes:
                paragraphs.append(heading.upper())
                paragraphs.extend(notes)
        _text_page(pdf, 'Interpretation', paragraphs)

        for name, title in PDF_TABLES:
            if name in tables and not tables[name].empty:
                _table_pages(pdf, title, tables[name])

        for fig in results['figures'].values():
            pdf.savefig(fig, bbox_inches='tight')

        if results.get('references'):
            _text_page(pdf, 'References', results['references'])

        info = pdf.infodict()
        info['Title'] = REPORT_TITLE

    print(f"[Report] PDF written: {path}")
    return path


def render_markdown(results: Dict, path, fig_dir: Optional[Path] = None) -> Path:
    """Markdown companion: narrative, tables as text blocks, figure links,
    references."""
    path = Path(path)
    lines = [f"# {REPORT_TITLE}", ""]
    lines += [_methods_paragraph(results), ""]

    for key, heading in NARRATIVE_HEADINGS.items():
        notes = results['narrative'].get(key) or []
        if not notes:
            continue
        lines += [f"## {heading}", ""]
        lines += [f"{n}\n" for n in notes]

    lines += ["## Tables", ""]
    for name, title in PDF_TABLES:
        df = results['tables'].get(name)
        if df is None or df.empty:
            continue
        lines += [f"### {title}", "", "```", df.to_string(float_format=lambda v: f"{v:.4g}"),
                  "```", ""]

    if fig_dir is not None:
        lines += ["## Figures", ""]
        for png in sorted(Path(fig_dir).glob('*.png')):
            rel = png.relative_to(path.parent) if png.is_relative_to(path.parent) else png
            lines.append(f"![{png.stem}]({rel.as_posix()})")
        lines.append("")

    if results.get('references'):
        lines += ["## References", ""]
        lines += [f"- {entry}" for entry in results['references']]
        lines.append("")

    path.write_text("\n".join(lines), encoding='utf-8')
    print(f"[Report] Markdown written: {path}")
    return path


# ═══════════════════════════════════════════════════════════════
# Command line
# ═══════════════════════════════════════════════════════════════

def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description=REPORT_TITLE)
    parser.add_argument('--config', help='JSON file with ReportConfig fields')
    parser.add_argument('--data', help='Growth CSV (sample dataset if omitted)')
    parser.add_argument('--output', help='Output directory')
    parser.add_argument('--no-bayes', action='store_true', help='Skip the Bayesian stage')
    parser.add_argument('--backends', nargs='+', choices=['hmc', 'gibbs'],
                        help='Bayesian backends to run')
    parser.add_argument('--draws', type=int, help='Posterior draws per chain (HMC)')
    parser.add_argument('--chains', type=int, help='Number of chains')
    parser.add_argument('--references', help='Bibliography CSV (key, authors, year, title, source)')
    parser.add_argument('--citation-style', choices=['author-year', 'numeric'],
                        help='Citation and reference list style')
    args = parser.parse_args(argv)

    matplotlib.use('Agg')

    config = ReportConfig.from_json(args.config) if args.config else ReportConfig()
    if args.data:
        config.data_path = args.data
    if args.output:
        config.output_dir = args.output
    if args.no_bayes:
        config.run_bayesian = False
    if args.backends:
        config.backends = args.backends
    if args.draws:
        config.n_draws = args.draws
    if args.chains:
        config.n_chains = args.chains
    if args.references:
        config.references_path = args.references
    if args.citation_style:
        config.citation_style = args.citation_style

    run_report(config)
    return 0


if __name__ == '__main__':
    sys.exit(main())
