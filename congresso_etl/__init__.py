"""
ETL for Brazilian legislative open data.

Pulls deputy rosters, expenses and speeches from the Câmara dos Deputados
API and leadership roles from the Senado Federal API, normalizes the
payloads into canonical records and loads them into a document store.
"""

__version__ = "0.1.0"
