"""Report parsers, aggregators and comparators, one module per report kind."""
