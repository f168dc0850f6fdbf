from apscheduler.schedulers.background import BackgroundScheduler

from services.scheduler import CHECK_JOB_ID, STARTUP_JOB_ID


class RecordingBackground:
    instances = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.jobs = []
        self.started = False
        self.shutdowns = 0
        RecordingBackground.instances.append(self)

    def add_job(self, func, trigger, **kwargs):
        self.jobs.append((trigger, kwargs))

    def start(self):
        self.started = True

    def shutdown(self, wait=True):
        self.shutdowns += 1


def test_start_twice_registers_one_timer(make_scheduler):
    RecordingBackground.instances = []
    scheduler = make_scheduler([], scheduler_factory=RecordingBackground)

    scheduler.start()
    scheduler.start()

    assert scheduler.running
    assert len(RecordingBackground.instances) == 1
    background = RecordingBackground.instances[0]
    assert background.started
    assert background.kwargs == {"timezone": "Europe/Tirane"}

    triggers = {kwargs["id"]: (trigger, kwargs) for trigger, kwargs in background.jobs}
    trigger, interval = triggers[CHECK_JOB_ID]
    assert trigger == "interval"
    assert interval["seconds"] == 3600
    assert interval["max_instances"] == 1
    assert interval["coalesce"] is True
    assert interval["misfire_grace_time"] == 3600
    startup_trigger, startup = triggers[STARTUP_JOB_ID]
    assert startup_trigger == "date"
    assert startup["misfire_grace_time"] is None


def test_stop_is_idempotent(make_scheduler):
    RecordingBackground.instances = []
    scheduler = make_scheduler([], scheduler_factory=RecordingBackground)

    scheduler.stop()
    scheduler.start()
    scheduler.stop()
    scheduler.stop()

    assert not scheduler.running
    assert RecordingBackground.instances[0].shutdowns == 1


def test_restart_after_stop_creates_fresh_timer(make_scheduler):
    RecordingBackground.instances = []
    scheduler = make_scheduler([], scheduler_factory=RecordingBackground)

    scheduler.start()
    scheduler.stop()
    scheduler.start()

    assert scheduler.running
    assert len(RecordingBackground.instances) == 2
    scheduler.stop()


def test_real_background_scheduler_lifecycle(make_scheduler):
    created = []

    def factory(**kwargs):
        background = BackgroundScheduler(**kwargs)
        created.append(background)
        return background

    scheduler = make_scheduler([], scheduler_factory=factory)
    try:
        scheduler.start()
        scheduler.start()
        assert len(created) == 1
        background = created[0]
        assert background.running
        assert background.get_job(CHECK_JOB_ID) is not None
        assert background.get_job(STARTUP_JOB_ID) is not None
        assert len(background.get_jobs()) == 2
        assert background.get_job(CHECK_JOB_ID).misfire_grace_time == 3600
        assert background.get_job(STARTUP_JOB_ID).misfire_grace_time is None
    finally:
        scheduler.stop()
        scheduler.stop()

    assert not scheduler.running
