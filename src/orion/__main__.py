from orion.main import run

run()
