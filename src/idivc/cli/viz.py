from __future__ import annotations

import typer
from typing import Optional

from idivc.vis.hist import save_time_hist_png

app = typer.Typer(help="IDIVC output visualization tools")

@app.command("hist")
def hist(
    path: str = typer.Argument(..., help="Reduced output file (.root or .h5)"),
    tree: str = typer.Option("idivc", "--tree", "-t", help="Tree / group name"),
    bins: int = typer.Option(200, "--bins", "-b", min=1, help="Histogram bins"),
    out: Optional[str] = typer.Option(None, "--out", "-o", help="Output PNG path (defaults to file.png)"),
):
    """Render ID and IV first-light time histograms to a PNG."""
    out_png = save_time_hist_png(path, out_png=out, tree_name=tree, bins=bins)
    typer.echo(f"Wrote {out_png}")

if __name__ == "__main__":
    app()
