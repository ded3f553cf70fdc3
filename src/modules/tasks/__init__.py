"""Tasks module: proposal, council approval, reverse-auction bidding, verification and settlement."""
