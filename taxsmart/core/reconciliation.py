"""Cross-document reconciliation for Form 16, Form 26AS and AIS.

Exposes high-level function:
- reconcile(f16, as26, ais) -> list[Finding]

Each rule looks at the three (possibly zero-valued) records and returns at
most one Finding. Rules never depend on each other and run in the order of
RULES, which is also the order of the output.
"""
import logging
from typing import Callable, List, Optional

from .currency import format_inr
from .models import AISRecord, Finding, Form16Record, Form26ASRecord, SeverityClass, SeverityColor

logger = logging.getLogger(__name__)

# Absolute-difference tolerances in rupees; a difference equal to the
# tolerance is not reported.
TDS_MISMATCH_TOLERANCE = 1000
SALARY_MISMATCH_TOLERANCE = 5000
INTEREST_MISMATCH_TOLERANCE = 2000
CAPITAL_GAINS_THRESHOLD = 10000
DIVIDEND_THRESHOLD = 5000

Rule = Callable[[Form16Record, Form26ASRecord, AISRecord], Optional[Finding]]


def _critical(title: str, description: str, action: str, icon: str) -> Finding:
    return Finding(
        severity_class=SeverityClass.CRITICAL,
        severity_color=SeverityColor.RED,
        title=title,
        description=description,
        recommended_action=action,
        icon=icon,
    )


def _warning(title: str, description: str, action: str, icon: str) -> Finding:
    return Finding(
        severity_class=SeverityClass.WARNING,
        severity_color=SeverityColor.AMBER,
        title=title,
        description=description,
        recommended_action=action,
        icon=icon,
    )


def _info(title: str, description: str, action: str, icon: str) -> Finding:
    return Finding(
        severity_class=SeverityClass.INFO,
        severity_color=SeverityColor.BLUE,
        title=title,
        description=description,
        recommended_action=action,
        icon=icon,
    )


def exceeds_tolerance(first: int, second: int, tolerance: int) -> bool:
    """Both amounts present and further apart than ``tolerance``."""
    return first > 0 and second > 0 and abs(first - second) > tolerance


def check_tds_mismatch(f16: Form16Record, as26: Form26ASRecord, ais: AISRecord) -> Optional[Finding]:
    """TDS claimed by the employer must appear in 26AS to be creditable."""
    if not exceeds_tolerance(f16.tds_deducted_form16, as26.total_tds_26as, TDS_MISMATCH_TOLERANCE):
        return None
    diff = abs(f16.tds_deducted_form16 - as26.total_tds_26as)
    return _critical(
        "TDS Mismatch: Form 16 vs 26AS",
        f"Form 16 shows TDS of {format_inr(f16.tds_deducted_form16)}, but Form 26AS shows "
        f"{format_inr(as26.total_tds_26as)}. Difference: {format_inr(diff)}.",
        "Contact your employer HR/payroll team immediately. "
        "TDS not in 26AS cannot be claimed as credit.",
        "warning",
    )


def check_salary_mismatch(f16: Form16Record, as26: Form26ASRecord, ais: AISRecord) -> Optional[Finding]:
    if not exceeds_tolerance(f16.gross_salary, ais.salary_ais, SALARY_MISMATCH_TOLERANCE):
        return None
    diff = abs(f16.gross_salary - ais.salary_ais)
    return _warning(
        "Salary Mismatch: Form 16 vs AIS",
        f"Form 16 shows {format_inr(f16.gross_salary)} but AIS shows "
        f"{format_inr(ais.salary_ais)}. Difference: {format_inr(diff)}.",
        "Cross-check with your employer. AIS may include perquisites. "
        "Declare the correct figure in your ITR.",
        "alert",
    )


def check_missing_deductor_pan(f16: Form16Record, as26: Form26ASRecord, ais: AISRecord) -> Optional[Finding]:
    """Deductors without a PAN cannot have their TDS matched to the filer."""
    missing = sum(1 for entry in as26.tds_entries if entry.has_missing_pan)
    if not missing:
        return None
    noun = "Entries" if missing > 1 else "Entry"
    return _warning(
        f"Missing PAN in {missing} TDS {noun}",
        f"{missing} deductor(s) have missing or invalid PAN. TDS credit may not be claimable.",
        "Contact the deductors and ask them to file a TDS correction with their PAN.",
        "id-card",
    )


def check_interest_mismatch(f16: Form16Record, as26: Form26ASRecord, ais: AISRecord) -> Optional[Finding]:
    if not exceeds_tolerance(ais.interest_income_ais, as26.interest_income_26as, INTEREST_MISMATCH_TOLERANCE):
        return None
    return _warning(
        "Interest Income Discrepancy",
        f"AIS shows {format_inr(ais.interest_income_ais)} but 26AS shows "
        f"{format_inr(as26.interest_income_26as)}.",
        "Use the higher figure in your ITR to avoid a notice from the Income Tax Department.",
        "money",
    )


def check_capital_gains(f16: Form16Record, as26: Form26ASRecord, ais: AISRecord) -> Optional[Finding]:
    if not (ais.ltcg_ais > 0 or ais.stcg_ais > 0):
        return None
    if ais.ltcg_ais + ais.stcg_ais <= CAPITAL_GAINS_THRESHOLD:
        return None
    return _info(
        "Capital Gains Found in AIS",
        f"LTCG: {format_inr(ais.ltcg_ais)}, STCG: {format_inr(ais.stcg_ais)}. "
        "These have been auto-filled.",
        "Cross-check with your broker's P&L statement before filing.",
        "chart",
    )


def check_dividend_income(f16: Form16Record, as26: Form26ASRecord, ais: AISRecord) -> Optional[Finding]:
    if ais.dividend_ais <= DIVIDEND_THRESHOLD:
        return None
    return _info(
        "Dividend Income Detected",
        f"AIS shows dividend income of {format_inr(ais.dividend_ais)}. "
        "Fully taxable since FY 2020-21.",
        "Declare under Income from Other Sources in your ITR. Check if TDS was deducted.",
        "building",
    )


RULES: tuple[Rule, ...] = (
    check_tds_mismatch,
    check_salary_mismatch,
    check_missing_deductor_pan,
    check_interest_mismatch,
    check_capital_gains,
    check_dividend_income,
)


def reconcile(
    f16: Form16Record,
    as26: Form26ASRecord,
    ais: AISRecord,
    rules: tuple[Rule, ...] = RULES
) -> List[Finding]:
    """Run every rule against the three records and collect the findings.

    Args:
        f16: Form 16 record (zero-valued when not supplied)
        as26: Form 26AS record (zero-valued when not supplied)
        ais: AIS record (zero-valued when not supplied)
        rules: Rules to evaluate, in output order

    Returns:
        Findings in rule order; empty when nothing needs attention
    """
    findings = []
    for rule in rules:
        finding = rule(f16, as26, ais)
        if finding is not None:
            findings.append(finding)

    logger.debug(f"[RECON] {len(findings)} finding(s) from {len(rules)} rules")
    return findings
