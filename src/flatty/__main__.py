from flatty.cli import entrypoint

entrypoint()
