"""
Prompts module for tax document extraction.
Contains the schema instructions sent to the Gemini API for each document kind.
"""
from taxsmart.core.models import DocumentKind

FORM16_EXTRACTION_PROMPT = """You are an expert Indian tax data extractor. Extract all data from this Form 16 and return ONLY a valid JSON object with these exact keys (use 0 for missing numbers, empty string for missing text):
{
  "name": "",
  "pan": "",
  "employer_name": "",
  "gross_salary": 0,
  "basic_salary": 0,
  "hra_received": 0,
  "special_allowance": 0,
  "prof_tax": 0,
  "epf_employee": 0,
  "epf_employer": 0,
  "sec80c": 0,
  "nps": 0,
  "employer_nps": 0,
  "sec80d_self": 0,
  "home_loan_interest": 0,
  "sec80e": 0,
  "standard_deduction": 50000,
  "tds_deducted_form16": 0,
  "total_income_form16": 0,
  "taxable_income_form16": 0
}
Return ONLY the JSON object, absolutely no explanation or markdown."""

FORM26AS_EXTRACTION_PROMPT = """You are an expert Indian tax data extractor. Extract all data from this Form 26AS and return ONLY a valid JSON object with these exact keys (use 0 for missing numbers, empty string for missing text):
{
  "pan": "",
  "tds_entries": [{"deductor": "", "amount": 0, "tds": 0, "pan_deductor": ""}],
  "total_tds_26as": 0,
  "advance_tax": 0,
  "self_assessment_tax": 0,
  "salary_income_26as": 0,
  "interest_income_26as": 0
}
Return ONLY the JSON object, no explanation."""

AIS_EXTRACTION_PROMPT = """You are an expert Indian tax data extractor. Extract all financial data from this Annual Information Statement (AIS) and return ONLY a valid JSON object with these exact keys (use 0 for missing numbers, empty string for missing text):
{
  "pan": "",
  "salary_ais": 0,
  "interest_income_ais": 0,
  "dividend_ais": 0,
  "rental_income_ais": 0,
  "ltcg_ais": 0,
  "stcg_ais": 0,
  "mf_transactions": 0,
  "foreign_income": 0,
  "tds_total_ais": 0
}
Return ONLY the JSON object, no explanation."""

EXTRACTION_PROMPTS = {
    DocumentKind.F16: FORM16_EXTRACTION_PROMPT,
    DocumentKind.AS26: FORM26AS_EXTRACTION_PROMPT,
    DocumentKind.AIS: AIS_EXTRACTION_PROMPT,
}
