"""Legacy attachment/note conversion.

``select_scope`` picks the records, ``ConversionRunner`` pages through them
and ``ConversionEngine`` converts one page at a time against a
``RecordStore``.  Sharing, deletion and ownership decisions live in
``policies`` as plain functions.
"""
