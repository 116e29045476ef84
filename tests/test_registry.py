import os, sys, tempfile, shutil, textwrap, unittest

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if BASE_DIR not in sys.path:
	sys.path.insert(0, BASE_DIR)

from dummyfiles_core import ApplicationRegistry, RegistryError, build_registry, DEFAULT_APPLICATIONS  # type: ignore
import dummyfiles_apps  # type: ignore


def _noop(options): return 0


class TestApplicationRegistry(unittest.TestCase):
	def test_duplicate_names_rejected(self):
		with self.assertRaises(RegistryError):
			ApplicationRegistry([('report', _noop), ('mirror', _noop), ('report', _noop)])

	def test_non_callable_rejected(self):
		with self.assertRaises(RegistryError):
			ApplicationRegistry([('report', 'not a function')])

	def test_order_is_registration_order(self):
		reg = ApplicationRegistry([('b', _noop), ('a', _noop), ('c', _noop)])
		self.assertEqual(reg.names(), ['b', 'a', 'c'])
		self.assertEqual(list(reg), ['b', 'a', 'c'])
		self.assertEqual(len(reg), 3)

	def test_exact_lookup(self):
		reg = ApplicationRegistry([('report', _noop)])
		self.assertIs(reg.get('report'), _noop)
		self.assertIsNone(reg.get('REPORT'))
		self.assertIsNone(reg.get('report '))
		self.assertIn('report', reg)
		self.assertNotIn('rep', reg)

	def test_no_mutation_api(self):
		reg = ApplicationRegistry([('report', _noop)])
		self.assertFalse(hasattr(reg, '__setitem__'))
		self.assertFalse(hasattr(reg, 'register'))


class TestBuildRegistry(unittest.TestCase):
	def setUp(self):
		self.tempdir = tempfile.mkdtemp(prefix='dummyfiles_reg_')
		with open(os.path.join(self.tempdir, 'dummyfiles_extra_app.py'), 'w', encoding='utf-8') as f:
			f.write(textwrap.dedent('''
				CALLS = []
				def main(options):
					CALLS.append(list(options))
					return 5
				NOT_CALLABLE = 1
			'''))
		sys.path.insert(0, self.tempdir)

	def tearDown(self):
		sys.path.remove(self.tempdir)
		sys.modules.pop('dummyfiles_extra_app', None)
		shutil.rmtree(self.tempdir, ignore_errors=True)

	def test_defaults(self):
		reg = build_registry()
		self.assertEqual(reg.names(), [n for n, _ in DEFAULT_APPLICATIONS])
		self.assertEqual(reg.names(), ['mirror', 'restore', 'report'])

	def test_default_handlers_resolve_to_apps(self):
		reg = build_registry()
		missing = os.path.join(self.tempdir, 'does-not-exist')
		self.assertEqual(reg.get('report')([missing]), dummyfiles_apps.EXIT_PATH_MISSING)
		self.assertEqual(reg.get('restore')([missing]), dummyfiles_apps.EXIT_PATH_MISSING)

	def test_extra_application_appended(self):
		reg = build_registry({'extra': 'dummyfiles_extra_app:main'})
		self.assertEqual(reg.names(), ['mirror', 'restore', 'report', 'extra'])
		self.assertEqual(reg.get('extra')(['-a']), 5)

	def test_extra_cannot_shadow_builtin(self):
		with self.assertRaises(RegistryError):
			build_registry({'report': 'dummyfiles_extra_app:main'})

	def test_bad_targets(self):
		for target in ['no_such_module_for_dummyfiles:main', 'dummyfiles_extra_app:missing',
		               'dummyfiles_extra_app:NOT_CALLABLE', 'no-colon', 42]:
			with self.assertRaises(RegistryError, msg=repr(target)):
				build_registry({'extra': target})

	def test_applications_must_be_mapping(self):
		with self.assertRaises(RegistryError):
			build_registry(['dummyfiles_extra_app:main'])


if __name__ == '__main__':
	unittest.main()
