"""Sales import package: store models, import pipelines, HTTP shell.

Loads exported sale datasets (clients, invoices and both status histories)
into the relational store used by the reporting layer.
"""
