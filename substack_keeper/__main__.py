from substack_keeper.scheduler.main import run

run()
