from minitwt.main import run

run()
